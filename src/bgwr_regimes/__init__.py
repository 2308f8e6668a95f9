"""Bayesian GWR Regimes - spatially varying coefficients by MCMC and consensus clustering."""

__version__ = "0.1.0"

from bgwr_regimes.consensus import dahl_consensus as dahl_consensus
from bgwr_regimes.consensus import mode_partition as mode_partition
from bgwr_regimes.kernel import build_kernel as build_kernel
from bgwr_regimes.models import PartitionEnsemble as PartitionEnsemble
from bgwr_regimes.models import PosteriorDraws as PosteriorDraws
from bgwr_regimes.models import Priors as Priors
from bgwr_regimes.models import RJConfig as RJConfig
from bgwr_regimes.models import SamplerConfig as SamplerConfig
from bgwr_regimes.models import SpatialData as SpatialData
from bgwr_regimes.oracle import cluster_draws as cluster_draws
from bgwr_regimes.sampler import GibbsSampler as GibbsSampler
from bgwr_regimes.sampler import PyMCSampler as PyMCSampler
from bgwr_regimes.scoring import rand_index as rand_index
