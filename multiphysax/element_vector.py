"""Gather/scatter between global DOF arrays and element-local buffers.

Element vectors hide how global storage is laid out from the assembly engine.
Every strategy applies the orientation sign of a global DOF on gather and
applies the same sign again on scatter; since signs are +1 or -1 the scatter is
the transpose of the gather.

Two execution strategies are provided:

* Serial vectors gather and scatter one element at a time. The global array is
  updated immediately by ``add_element_values``/``set_element_values``.
* Parallel vectors keep a bulk (num_elements, ndof) array. ``init_values``
  gathers every element at once, the engine writes whole element batches into
  the bulk array and ``add_values`` scatters everything back with a single
  scatter-add, which sums contributions to shared DOFs without locking.

The per-element calls of a parallel vector never touch the global array, and
the bulk calls of a serial vector do nothing, so the engine can drive both
strategies through the same sequence of calls.

Key Classes:
    SolutionVector: Caller-owned global DOF array
    ElementVector_Serial / ElementVector_Parallel: Vector gather/scatter
    EmptyElementVector: Placeholder for zero-DOF spaces
    ElementMat_Serial / ElementMat_Parallel: Element matrix scatter
"""

import enum
from typing import Optional

import jax.numpy as np

from multiphysax import logger
from multiphysax.mesh import ElementMesh
from multiphysax.sparse import SparseMatrix


class ElemVecType(enum.Enum):
    """Execution strategy of an element vector."""

    Serial = "serial"
    Parallel = "parallel"


class SolutionVector:
    """Global DOF array owned by the caller.

    JAX arrays are immutable, so updates rebind ``array``; element vectors hold a
    reference to this holder and always see the latest values.

    Args:
        num_dof (int): Number of global DOFs.
        dtype: Array dtype. Defaults to float64.
    """

    def __init__(self, num_dof: int, dtype=np.float64):
        self.array = np.zeros(num_dof, dtype=dtype)

    @classmethod
    def from_array(cls, array) -> "SolutionVector":
        vec = cls(0)
        vec.array = np.asarray(array)
        return vec

    def get_num_dof(self) -> int:
        return self.array.shape[0]

    def __len__(self) -> int:
        return self.get_num_dof()

    def __getitem__(self, index):
        return self.array[index]

    def __setitem__(self, index, value):
        self.array = self.array.at[index].set(value)

    def zero(self):
        self.array = np.zeros_like(self.array)

    def copy(self) -> "SolutionVector":
        return SolutionVector.from_array(self.array)


class ElementVectorBase:
    """Common interface of all element vectors."""

    evtype: Optional[ElemVecType] = None

    def __init__(self, mesh: ElementMesh, vec: SolutionVector):
        if mesh.get_num_dof() > vec.get_num_dof():
            raise ValueError(
                f"Mesh references {mesh.get_num_dof()} DOFs but the vector has {vec.get_num_dof()}"
            )
        self.mesh = mesh
        self.vec = vec

    @property
    def ndof(self) -> int:
        return self.mesh.basis.ndof

    def get_num_elements(self) -> int:
        return self.mesh.get_num_elements()

    def init_values(self):
        pass

    def init_zero_values(self):
        pass

    def add_values(self):
        pass


class EmptyElementVector(ElementVectorBase):
    """Element vector of a space without DOFs.

    Compatible with both strategies. Gathers return an empty buffer and every
    other call does nothing.
    """

    def __init__(self, num_elements: int = 0):
        self.num_elements = num_elements

    @property
    def ndof(self) -> int:
        return 0

    def get_num_elements(self) -> int:
        return self.num_elements

    def get_element_values(self, elem: int) -> np.ndarray:
        return np.zeros((0,))

    def get_element_array(self) -> np.ndarray:
        return np.zeros((self.num_elements, 0))

    def add_element_values(self, elem: int, dof: np.ndarray):
        pass

    def set_element_values(self, elem: int, dof: np.ndarray):
        pass


class ElementVector_Serial(ElementVectorBase):
    """Element-at-a-time gather/scatter on a global ``SolutionVector``."""

    evtype = ElemVecType.Serial

    def get_element_values(self, elem: int) -> np.ndarray:
        """Gather element ``elem``: ``dof[i] = sign[i] * global[index[i]]``."""
        return self.mesh.element_sign[elem] * self.vec.array[self.mesh.element_dof[elem]]

    def add_element_values(self, elem: int, dof: np.ndarray):
        """Scatter-add: ``global[index[i]] += sign[i] * dof[i]``."""
        self.vec.array = self.vec.array.at[self.mesh.element_dof[elem]].add(
            self.mesh.element_sign[elem] * dof
        )

    def set_element_values(self, elem: int, dof: np.ndarray):
        """Overwrite: ``global[index[i]] = sign[i] * dof[i]``."""
        self.vec.array = self.vec.array.at[self.mesh.element_dof[elem]].set(
            self.mesh.element_sign[elem] * dof
        )


class ElementVector_Parallel(ElementVectorBase):
    """Bulk gather/scatter through a (num_elements, ndof) array."""

    evtype = ElemVecType.Parallel

    def __init__(self, mesh: ElementMesh, vec: SolutionVector):
        super().__init__(mesh, vec)
        self.elem_vec_array = np.zeros((mesh.get_num_elements(), self.ndof), dtype=vec.array.dtype)

    def init_values(self):
        """Gather every element from the global array at once."""
        self.elem_vec_array = self.mesh.element_sign * self.vec.array[self.mesh.element_dof]

    def init_zero_values(self):
        """Zero the bulk array; the global array is left untouched."""
        self.elem_vec_array = np.zeros_like(self.elem_vec_array)

    def add_values(self):
        """Scatter-add the bulk array into the global array."""
        logger.debug(f"Scattering {self.elem_vec_array.size} element values")
        self.vec.array = self.vec.array.at[self.mesh.element_dof.reshape(-1)].add(
            (self.mesh.element_sign * self.elem_vec_array).reshape(-1)
        )

    def get_element_array(self) -> np.ndarray:
        return self.elem_vec_array

    def add_element_array(self, values: np.ndarray):
        self.elem_vec_array = self.elem_vec_array + values

    def get_element_values(self, elem: int) -> np.ndarray:
        return self.elem_vec_array[elem]

    def add_element_values(self, elem: int, dof: np.ndarray):
        pass

    def set_element_values(self, elem: int, dof: np.ndarray):
        pass


class ElementMat_Serial:
    """Element-at-a-time scatter of dense element matrices into a ``SparseMatrix``.

    Entry (i, j) of an element matrix is multiplied by ``sign[i] * sign[j]``.
    """

    evtype = ElemVecType.Serial

    def __init__(self, mesh: ElementMesh, mat: SparseMatrix):
        self.mesh = mesh
        self.mat = mat

    def get_num_elements(self) -> int:
        return self.mesh.get_num_elements()

    def init_zero_values(self):
        pass

    def add_values(self):
        pass

    def add_element_values(self, elem: int, elem_mat: np.ndarray):
        sign = self.mesh.element_sign[elem]
        dof = self.mesh.element_dof[elem]
        self.mat.add_values(dof, dof, sign[:, None] * sign[None, :] * elem_mat)


class ElementMat_Parallel:
    """Bulk scatter of a (num_elements, ndof, ndof) array into a ``SparseMatrix``."""

    evtype = ElemVecType.Parallel

    def __init__(self, mesh: ElementMesh, mat: SparseMatrix):
        self.mesh = mesh
        self.mat = mat
        ndof = mesh.basis.ndof
        self.elem_mat_array = np.zeros((mesh.get_num_elements(), ndof, ndof))

    def get_num_elements(self) -> int:
        return self.mesh.get_num_elements()

    def init_zero_values(self):
        self.elem_mat_array = np.zeros_like(self.elem_mat_array)

    def get_element_array(self) -> np.ndarray:
        return self.elem_mat_array

    def add_element_array(self, values: np.ndarray):
        self.elem_mat_array = self.elem_mat_array + values

    def add_element_values(self, elem: int, elem_mat: np.ndarray):
        pass

    def add_values(self):
        sign = self.mesh.element_sign
        dof = self.mesh.element_dof
        self.mat.add_values(dof, dof, sign[:, :, None] * sign[:, None, :] * self.elem_mat_array)
