"""Core HMM algorithms, emission schemes and model persistence."""

from genomehmm.core.emission import (
    CategoricalEmissionScheme,
    ConstantIntegerEmissionScheme,
    NegBinEmissionScheme,
    NegBinRegressionEmissionScheme,
    PoissonEmissionScheme,
    PoissonRegressionEmissionScheme,
)
from genomehmm.core.hmm import MLHMM, ConstrainedEmissions, FreeEmissions
from genomehmm.core.mixture import MLFreeMixture, ZeroPoissonMixture
from genomehmm.core.fitter import Fitter, poisson_hmm_guess
from genomehmm.core.monitor import FitResult, MLMonitor
from genomehmm.core.model_io import dumps_model, load_model, loads_model, save_model
