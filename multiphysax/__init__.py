import jax

jax.config.update("jax_enable_x64", True)

from .logger_setup import setup_logger
# LOGGING
logger = setup_logger(__name__)

# Import modules
from . import spaces
from . import quadrature
from . import basis
from . import mesh
from . import sparse
from . import element_vector
from . import boundary_conditions
from . import pde
from . import element
from . import consistency

from .spaces import FESpace, QptSpace, H1Space, L2Space, HdivSpace, HcurlSpace, TransformKind
from .quadrature import GaussQuadrature, GaussLobattoQuadrature, HexGaussQuadrature, QuadGaussQuadrature
from .basis import ElementTypes, FEBasis, LagrangeH1Basis, LagrangeL2Basis, QHdivBasis
from .mesh import ElementMesh, box_mesh, box_element_map, set_geometry
from .sparse import SparseMatrix
from .element_vector import (
    ElemVecType,
    SolutionVector,
    EmptyElementVector,
    ElementVector_Serial,
    ElementVector_Parallel,
    ElementMat_Serial,
    ElementMat_Parallel,
)
from .boundary_conditions import DirichletBC, BoundaryCondition
from .element import FiniteElement
from .consistency import check_pde_implementation, ConsistencyReport

__version__ = "0.1.0"
