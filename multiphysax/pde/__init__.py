from .base import PDE, LinearizedJacVecProduct
from .poisson import Poisson, MixedPoisson
from .heat_conduction import HeatConduction, MixedHeatConduction
from .elasticity import NonlinearElasticity
