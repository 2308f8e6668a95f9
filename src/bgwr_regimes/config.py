"""Configuration constants for the Bayesian GWR regime pipeline."""

# Distances
DISTANCE_MAX = 10.0  # normalized maximum inter-unit distance (also the lambda prior bound)
EARTH_RADIUS_KM = 6371.0

# MCMC
DEFAULT_ITERATIONS = 3000
DEFAULT_BURNIN = 1000
DEFAULT_THIN = 2
DEFAULT_CHAINS = 2
RANDOM_SEED = 42
LAMBDA_STEP = 0.5  # random-walk sd for the bandwidth proposal
MAX_WORKERS = 4  # upper bound on concurrent chains / oracle calls

# Priors (Gamma is shape/rate)
TAU_SHAPE = 1.0
TAU_RATE = 1.0
PSI_SHAPE = 1.0
PSI_RATE = 1.0
PI_ALPHA = 1.0
PI_BETA = 1.0

# Reversible jump proposal for a newly included coefficient
RJ_PROPOSAL_MEAN = 0.0
RJ_PROPOSAL_SCALE = 1.0

# Clustering oracle
MAX_COMPONENTS = 10
SELECTION_CRITERION = "bic"
GMM_COVARIANCE = "full"
GMM_N_INIT = 1
GMM_REG_COVAR = 1e-6
MAX_RETRIES = 2  # perturbed-seed retries after a FitFailure
MIN_SUCCESS_FRACTION = 0.5  # minimum share of draws that must cluster
