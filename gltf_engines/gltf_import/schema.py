"""glTF 2.0 asset graph models.

Serialized fields mirror the glTF JSON schema names so that a parsed document
validates straight into these models. Runtime state that the resolver, the
primitive assembler and the scene builder attach while an import runs lives in
private attributes and is never serialized back out.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional

from pydantic import BaseModel, Field, PrivateAttr

from gltf_engines.common.errors import PartialDataWarning, ResolutionError


class GltfProperty(BaseModel):
    extensions: Dict[str, Any] = Field(default_factory=dict)
    extras: Optional[Any] = None


class GltfChildOfRootProperty(GltfProperty):
    name: Optional[str] = None


class GltfAssetInfo(GltfProperty):
    version: str
    minVersion: Optional[str] = None
    generator: Optional[str] = None
    copyright: Optional[str] = None


# --- Binary data ---

class GltfBuffer(GltfChildOfRootProperty):
    byteLength: int = Field(..., ge=0)
    uri: Optional[str] = None

    _data: Optional[bytes] = PrivateAttr(default=None)

    @property
    def data(self) -> Optional[bytes]:
        return self._data

    @property
    def is_resolved(self) -> bool:
        return self._data is not None

    def set_data(self, payload: bytes) -> bool:
        """Store the payload once. Returns False when it was already set."""
        if self._data is not None:
            return False
        self._data = bytes(payload)
        return True


class GltfBufferTarget(int, Enum):
    ARRAY_BUFFER = 34962
    ELEMENT_ARRAY_BUFFER = 34963


class GltfBufferView(GltfChildOfRootProperty):
    buffer: int = Field(..., ge=0)
    byteOffset: int = Field(0, ge=0)
    byteLength: int = Field(..., ge=0)
    byteStride: Optional[int] = Field(None, ge=4, le=252)
    target: Optional[int] = None

    _data: Optional[memoryview] = PrivateAttr(default=None)

    @property
    def data(self) -> Optional[memoryview]:
        return self._data

    def bind(self, window: memoryview) -> None:
        self._data = window


class GltfComponentType(int, Enum):
    BYTE = 5120
    UNSIGNED_BYTE = 5121
    SHORT = 5122
    UNSIGNED_SHORT = 5123
    UNSIGNED_INT = 5125
    FLOAT = 5126


class GltfAccessorAttributeType(str, Enum):
    SCALAR = "SCALAR"
    VEC2 = "VEC2"
    VEC3 = "VEC3"
    VEC4 = "VEC4"
    MAT2 = "MAT2"
    MAT3 = "MAT3"
    MAT4 = "MAT4"


class GltfAccessorSparseIndices(GltfProperty):
    bufferView: int = Field(..., ge=0)
    byteOffset: int = Field(0, ge=0)
    componentType: GltfComponentType


class GltfAccessorSparseValues(GltfProperty):
    bufferView: int = Field(..., ge=0)
    byteOffset: int = Field(0, ge=0)


class GltfAccessorSparse(GltfProperty):
    count: int = Field(..., ge=1)
    indices: GltfAccessorSparseIndices
    values: GltfAccessorSparseValues


class GltfAccessor(GltfChildOfRootProperty):
    bufferView: Optional[int] = Field(None, ge=0)
    byteOffset: int = Field(0, ge=0)
    componentType: GltfComponentType
    normalized: bool = False
    count: int = Field(..., ge=1)
    type: GltfAccessorAttributeType
    max: Optional[List[float]] = None
    min: Optional[List[float]] = None
    sparse: Optional[GltfAccessorSparse] = None


# --- Images / textures ---

class GltfImage(GltfChildOfRootProperty):
    uri: Optional[str] = None
    mimeType: Optional[str] = None
    bufferView: Optional[int] = Field(None, ge=0)

    _image: Any = PrivateAttr(default=None)
    _texture: Any = PrivateAttr(default=None)

    @property
    def image(self) -> Any:
        """Decoded Pillow image."""
        return self._image

    @property
    def texture(self) -> Any:
        """Renderer texture handle."""
        return self._texture


class GltfSampler(GltfChildOfRootProperty):
    magFilter: Optional[int] = None
    minFilter: Optional[int] = None
    wrapS: int = 10497
    wrapT: int = 10497


class GltfTexture(GltfChildOfRootProperty):
    sampler: Optional[int] = Field(None, ge=0)
    source: Optional[int] = Field(None, ge=0)

    _texture: Any = PrivateAttr(default=None)

    @property
    def texture(self) -> Any:
        return self._texture


class GltfTextureInfo(GltfProperty):
    index: int = Field(..., ge=0)
    texCoord: int = Field(0, ge=0)


class GltfNormalTextureInfo(GltfTextureInfo):
    scale: float = 1.0


class GltfOcclusionTextureInfo(GltfTextureInfo):
    strength: float = Field(1.0, ge=0.0, le=1.0)


# --- Materials ---

class GltfAlphaMode(str, Enum):
    OPAQUE = "OPAQUE"
    MASK = "MASK"
    BLEND = "BLEND"


class GltfPbrMetallicRoughness(GltfProperty):
    baseColorFactor: List[float] = Field(default_factory=lambda: [1.0, 1.0, 1.0, 1.0])
    baseColorTexture: Optional[GltfTextureInfo] = None
    metallicFactor: float = Field(1.0, ge=0.0, le=1.0)
    roughnessFactor: float = Field(1.0, ge=0.0, le=1.0)
    metallicRoughnessTexture: Optional[GltfTextureInfo] = None


class GltfExtension(GltfProperty):
    """Base for typed extension records registered on an asset."""
    extension_name: ClassVar[str] = ""


class KhrMaterialsPbrSpecularGlossiness(GltfExtension):
    extension_name: ClassVar[str] = "KHR_materials_pbrSpecularGlossiness"

    diffuseFactor: List[float] = Field(default_factory=lambda: [1.0, 1.0, 1.0, 1.0])
    diffuseTexture: Optional[GltfTextureInfo] = None
    specularFactor: List[float] = Field(default_factory=lambda: [1.0, 1.0, 1.0])
    glossinessFactor: float = Field(1.0, ge=0.0, le=1.0)
    specularGlossinessTexture: Optional[GltfTextureInfo] = None


MATERIAL_EXTENSIONS: Dict[str, type] = {
    KhrMaterialsPbrSpecularGlossiness.extension_name: KhrMaterialsPbrSpecularGlossiness,
}


class GltfMaterial(GltfChildOfRootProperty):
    pbrMetallicRoughness: GltfPbrMetallicRoughness = Field(default_factory=GltfPbrMetallicRoughness)
    normalTexture: Optional[GltfNormalTextureInfo] = None
    occlusionTexture: Optional[GltfOcclusionTextureInfo] = None
    emissiveTexture: Optional[GltfTextureInfo] = None
    emissiveFactor: List[float] = Field(default_factory=lambda: [0.0, 0.0, 0.0])
    alphaMode: GltfAlphaMode = GltfAlphaMode.OPAQUE
    alphaCutoff: float = Field(0.5, ge=0.0)
    doubleSided: bool = False

    _extension_records: Dict[str, GltfExtension] = PrivateAttr(default_factory=dict)
    _params: Any = PrivateAttr(default=None)
    _handle: Any = PrivateAttr(default=None)

    @property
    def extension_records(self) -> Dict[str, GltfExtension]:
        return self._extension_records

    @property
    def params(self) -> Any:
        return self._params

    @property
    def handle(self) -> Any:
        return self._handle


# --- Geometry ---

class GltfDrawMode(int, Enum):
    POINTS = 0
    LINES = 1
    LINE_LOOP = 2
    LINE_STRIP = 3
    TRIANGLES = 4
    TRIANGLE_STRIP = 5
    TRIANGLE_FAN = 6


class GltfMeshPrimitive(GltfProperty):
    # Required by the schema; left optional so a missing block is reported as
    # a primitive/attribute count mismatch instead of a generic schema error.
    attributes: Optional[Dict[str, int]] = None
    indices: Optional[int] = Field(None, ge=0)
    material: Optional[int] = Field(None, ge=0)
    mode: GltfDrawMode = GltfDrawMode.TRIANGLES
    targets: Optional[List[Dict[str, int]]] = None

    _geometry: Any = PrivateAttr(default=None)

    @property
    def geometry(self) -> Any:
        return self._geometry


class GltfMesh(GltfChildOfRootProperty):
    primitives: List[GltfMeshPrimitive] = Field(..., min_length=1)
    weights: Optional[List[float]] = None

    _mesh: Any = PrivateAttr(default=None)

    @property
    def mesh(self) -> Any:
        return self._mesh


class GltfNode(GltfChildOfRootProperty):
    camera: Optional[int] = Field(None, ge=0)
    children: List[int] = Field(default_factory=list)
    skin: Optional[int] = Field(None, ge=0)
    matrix: Optional[List[float]] = Field(None, min_length=16, max_length=16)
    mesh: Optional[int] = Field(None, ge=0)
    rotation: Optional[List[float]] = Field(None, min_length=4, max_length=4)
    scale: Optional[List[float]] = Field(None, min_length=3, max_length=3)
    translation: Optional[List[float]] = Field(None, min_length=3, max_length=3)
    weights: Optional[List[float]] = None

    _handle: Any = PrivateAttr(default=None)

    @property
    def handle(self) -> Any:
        return self._handle


class GltfScene(GltfChildOfRootProperty):
    nodes: List[int] = Field(default_factory=list)


class GltfSkin(GltfChildOfRootProperty):
    inverseBindMatrices: Optional[int] = Field(None, ge=0)
    skeleton: Optional[int] = Field(None, ge=0)
    joints: List[int] = Field(..., min_length=1)


class GltfAnimationChannelTarget(GltfProperty):
    node: Optional[int] = Field(None, ge=0)
    path: str


class GltfAnimationChannel(GltfProperty):
    sampler: int = Field(..., ge=0)
    target: GltfAnimationChannelTarget


class GltfAnimationSampler(GltfProperty):
    input: int = Field(..., ge=0)
    interpolation: str = "LINEAR"
    output: int = Field(..., ge=0)


class GltfAnimation(GltfChildOfRootProperty):
    channels: List[GltfAnimationChannel] = Field(default_factory=list)
    samplers: List[GltfAnimationSampler] = Field(default_factory=list)


class GltfCameraOrthographic(GltfProperty):
    xmag: float
    ymag: float
    zfar: float
    znear: float


class GltfCameraPerspective(GltfProperty):
    aspectRatio: Optional[float] = None
    yfov: float
    zfar: Optional[float] = None
    znear: float


class GltfCamera(GltfChildOfRootProperty):
    type: str
    orthographic: Optional[GltfCameraOrthographic] = None
    perspective: Optional[GltfCameraPerspective] = None


# --- Root ---

class GltfAsset(GltfProperty):
    """Root of the asset graph. One instance per import, never shared."""

    asset: GltfAssetInfo
    extensionsUsed: List[str] = Field(default_factory=list)
    extensionsRequired: List[str] = Field(default_factory=list)
    accessors: List[GltfAccessor] = Field(default_factory=list)
    animations: List[GltfAnimation] = Field(default_factory=list)
    buffers: List[GltfBuffer] = Field(default_factory=list)
    bufferViews: List[GltfBufferView] = Field(default_factory=list)
    cameras: List[GltfCamera] = Field(default_factory=list)
    images: List[GltfImage] = Field(default_factory=list)
    materials: List[GltfMaterial] = Field(default_factory=list)
    meshes: List[GltfMesh] = Field(default_factory=list)
    nodes: List[GltfNode] = Field(default_factory=list)
    samplers: List[GltfSampler] = Field(default_factory=list)
    scene: Optional[int] = Field(None, ge=0)
    scenes: Optional[List[GltfScene]] = None
    skins: List[GltfSkin] = Field(default_factory=list)
    textures: List[GltfTexture] = Field(default_factory=list)

    _name: str = PrivateAttr(default="")
    _uri: Optional[str] = PrivateAttr(default=None)
    _load_async: bool = PrivateAttr(default=True)
    _warnings: List[PartialDataWarning] = PrivateAttr(default_factory=list)
    _registered_extensions: List[GltfExtension] = PrivateAttr(default_factory=list)
    _root: Any = PrivateAttr(default=None)

    @property
    def name(self) -> str:
        return self._name

    @property
    def uri(self) -> Optional[str]:
        """Location the document was loaded from, if any."""
        return self._uri

    @property
    def load_async(self) -> bool:
        return self._load_async

    @property
    def warnings(self) -> List[PartialDataWarning]:
        return self._warnings

    @property
    def registered_extensions(self) -> List[GltfExtension]:
        return self._registered_extensions

    @property
    def root(self) -> Any:
        """Root renderer node once the scene builder has run."""
        return self._root

    def set_source(self, name: str, uri: Optional[str], load_async: bool) -> None:
        self._name = name
        self._uri = uri
        self._load_async = load_async

    def item(self, collection: str, index: Optional[int]) -> Any:
        """Look up a cross-referenced entry, raising when the index is dangling."""
        items = getattr(self, collection) or []
        if index is None or index < 0 or index >= len(items):
            raise ResolutionError(
                "missing_index",
                f"{collection}[{index}] does not exist ({len(items)} defined)",
                {"collection": collection, "index": index},
            )
        return items[index]
