"""Material parameters handed to the renderer, plus texture channel repacking."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

import numpy as np
from PIL import Image
from pydantic import BaseModel, ConfigDict, Field

from gltf_engines.gltf_import.renderer import RendererSession
from gltf_engines.gltf_import.scheduling import Affinity, ImportScheduler
from gltf_engines.gltf_import.schema import (
    GltfAlphaMode,
    GltfAsset,
    GltfExtension,
    GltfMaterial,
    GltfTextureInfo,
    KhrMaterialsPbrSpecularGlossiness,
)

logger = logging.getLogger(__name__)

DEFAULT_MATERIAL_NAME = "glTF Default Material"


class BlendPolicy(BaseModel):
    src_blend: str
    dst_blend: str
    z_write: bool
    render_queue: int
    render_type: str
    alpha_test: bool = False
    alpha_premultiply: bool = False


BLEND_POLICIES: Dict[GltfAlphaMode, BlendPolicy] = {
    GltfAlphaMode.OPAQUE: BlendPolicy(
        src_blend="one", dst_blend="zero", z_write=True, render_queue=2000, render_type="Opaque",
    ),
    GltfAlphaMode.MASK: BlendPolicy(
        src_blend="one", dst_blend="zero", z_write=True, render_queue=2450, render_type="Cutout",
        alpha_test=True,
    ),
    GltfAlphaMode.BLEND: BlendPolicy(
        src_blend="one", dst_blend="one_minus_src_alpha", z_write=False, render_queue=3000,
        render_type="Transparency", alpha_premultiply=True,
    ),
}


class MaterialParams(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    index: Optional[int] = None
    name: str
    base_color: Tuple[float, float, float, float] = (1.0, 1.0, 1.0, 1.0)
    base_color_texture: Any = None
    alpha_mode: GltfAlphaMode = GltfAlphaMode.OPAQUE
    alpha_cutoff: Optional[float] = None
    blend: BlendPolicy = Field(default_factory=lambda: BLEND_POLICIES[GltfAlphaMode.OPAQUE])
    metallic: float = 1.0
    smoothness: float = 0.0
    metallic_gloss_texture: Any = None
    emissive_color: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    emissive_texture: Any = None
    normal_texture: Any = None
    normal_scale: float = 1.0
    occlusion_texture: Any = None
    occlusion_strength: float = 1.0
    double_sided: bool = False
    extensions: Dict[str, GltfExtension] = Field(default_factory=dict)


def default_material_params() -> MaterialParams:
    return MaterialParams(name=DEFAULT_MATERIAL_NAME)


def remap_metallic_roughness(image: Image.Image) -> Image.Image:
    """Repack a glTF metallic-roughness texture for a metal-in-R, smoothness-in-A renderer.

    Output R takes the source G channel, output A takes the source B channel,
    G and B are cleared.
    """
    source = np.asarray(image.convert("RGBA"))
    packed = np.zeros_like(source)
    packed[..., 0] = source[..., 1]
    packed[..., 3] = source[..., 2]
    return Image.fromarray(packed, mode="RGBA")


def _texture_handle(graph: GltfAsset, info: Optional[GltfTextureInfo]) -> Any:
    if info is None:
        return None
    return graph.item("textures", info.index).texture


def build_material_params(graph: GltfAsset, material: GltfMaterial, index: int) -> MaterialParams:
    """Map a glTF material onto renderer parameters (textures must already be built)."""
    pbr = material.pbrMetallicRoughness
    base = list(pbr.baseColorFactor) + [1.0] * (4 - len(pbr.baseColorFactor))
    emissive = list(material.emissiveFactor) + [0.0] * (3 - len(material.emissiveFactor))

    params = MaterialParams(
        index=index,
        name=material.name or f"glTF Material {index}",
        base_color=tuple(float(c) for c in base[:4]),
        base_color_texture=_texture_handle(graph, pbr.baseColorTexture),
        alpha_mode=material.alphaMode,
        alpha_cutoff=material.alphaCutoff if material.alphaMode == GltfAlphaMode.MASK else None,
        blend=BLEND_POLICIES[material.alphaMode],
        metallic=float(pbr.metallicFactor),
        smoothness=abs(float(pbr.roughnessFactor) - 1.0),
        emissive_color=tuple(float(c) for c in emissive[:3]),
        emissive_texture=_texture_handle(graph, material.emissiveTexture),
        normal_texture=_texture_handle(graph, material.normalTexture),
        normal_scale=material.normalTexture.scale if material.normalTexture else 1.0,
        occlusion_texture=_texture_handle(graph, material.occlusionTexture),
        occlusion_strength=material.occlusionTexture.strength if material.occlusionTexture else 1.0,
        double_sided=material.doubleSided,
        extensions=dict(material.extension_records),
    )

    spec_gloss = material.extension_records.get(KhrMaterialsPbrSpecularGlossiness.extension_name)
    if spec_gloss is not None:
        diffuse = list(spec_gloss.diffuseFactor) + [1.0] * (4 - len(spec_gloss.diffuseFactor))
        params.base_color = tuple(float(c) for c in diffuse[:4])
        if spec_gloss.diffuseTexture is not None:
            params.base_color_texture = _texture_handle(graph, spec_gloss.diffuseTexture)
        params.smoothness = float(spec_gloss.glossinessFactor)
    return params


async def construct_material(
    graph: GltfAsset,
    index: int,
    session: RendererSession,
    scheduler: ImportScheduler,
) -> Any:
    material = graph.item("materials", index)
    params = build_material_params(graph, material, index)

    mr_info = material.pbrMetallicRoughness.metallicRoughnessTexture
    if mr_info is not None:
        texture = graph.item("textures", mr_info.index)
        if texture.source is not None:
            source = graph.item("images", texture.source).image
            if source is not None:
                remapped = await scheduler.run(Affinity.BACKGROUND, remap_metallic_roughness, source)
                params.metallic_gloss_texture = await session.create_texture(
                    remapped, f"{params.name} MetallicGloss"
                )

    material._params = params
    material._handle = await session.create_material(params)
    logger.debug("Constructed material %s (%s)", params.name, params.alpha_mode.value)
    return material.handle
