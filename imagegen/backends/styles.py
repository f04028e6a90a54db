"""Art style presets and department scene transforms appended to prompts by the backend adapters."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class StylePreset:
    id: str
    name: str
    prompt: str


STYLE_PRESETS: tuple[StylePreset, ...] = (
    StylePreset("none", "Natural / None", ""),
    StylePreset(
        "byzantine",
        "Byzantine Icon",
        "Byzantine icon style, gold leaf background, flat perspective, sacred art, elongated features, tempera texture",
    ),
    StylePreset(
        "stained-glass",
        "Stained Glass",
        "Gothic stained glass window style, vibrant jewel tones, intricate lead lines, illuminated by sunlight, sacred atmosphere",
    ),
    StylePreset(
        "renaissance",
        "Renaissance",
        "High Renaissance oil painting masterpiece, realistic anatomical detail, soft sfumato lighting, dramatic composition",
    ),
    StylePreset(
        "baroque",
        "Baroque",
        "Baroque art style, dramatic chiaroscuro lighting, deep shadows, emotional intensity, dynamic movement",
    ),
    StylePreset(
        "fresco",
        "Ancient Fresco",
        "Ancient worn fresco wall painting, cracked plaster texture, muted earth tones, historical art",
    ),
    StylePreset(
        "manuscript",
        "Illuminated",
        "Medieval illuminated manuscript style, intricate gold leaf borders, calligraphy, vellum texture, detailed miniatures",
    ),
    StylePreset(
        "sketch",
        "Charcoal Sketch",
        "Vintage charcoal sketch on rough paper, artistic study, expressive lines, shading, old master drawing",
    ),
    StylePreset(
        "oil",
        "Classic Oil",
        "Traditional oil painting on canvas, visible brushstrokes, rich texture, classical art",
    ),
)

_BY_ID = {s.id: s for s in STYLE_PRESETS}


@dataclass(frozen=True)
class DepartmentTransform:
    """Scene context for a trade department, used to restage a photo's background."""

    id: str
    name: str
    category: str
    prompt: str
    description: str
    context_tags: tuple[str, ...] = ()


DEPARTMENT_TRANSFORMS: tuple[DepartmentTransform, ...] = (
    DepartmentTransform(
        "fitter-turning",
        "Fitter Turning",
        "Mechanical",
        "Transform background to show precision metalworking workshop environment with lathes, cutting tools, "
        "metal shavings, industrial machinery, overhead workbench with measuring instruments, safety equipment, "
        "workshop lighting, mechanical precision atmosphere",
        "Adds metalworking workshop context with precision tools and machinery",
        ("workshop", "machinery", "tools", "industrial"),
    ),
    DepartmentTransform(
        "welding",
        "Welding",
        "Metalworking",
        "Transform scene to welding workshop with welding equipment, sparks flying, protective gear hanging, "
        "welding masks, metal framework, industrial atmosphere, safety equipment, workshop tools, "
        "dramatic lighting effects",
        "Creates welding workshop environment with sparks and industrial atmosphere",
        ("welding", "sparks", "metalwork", "industrial"),
    ),
    DepartmentTransform(
        "masonry",
        "Masonry",
        "Construction",
        "Transform background to masonry workshop with brick piles, cement mixing area, construction tools, "
        "scaffolding materials, stone blocks, measuring equipment, construction site atmosphere, "
        "building materials storage",
        "Adds masonry and construction workshop context",
        ("construction", "bricks", "mortar", "building"),
    ),
    DepartmentTransform(
        "tailoring",
        "Tailoring",
        "Textiles",
        "Transform scene to professional tailoring workshop with sewing machines, fabric rolls, measuring tapes, "
        "mannequins, thread spools, cutting tables, textiles, fashion design atmosphere, craft workspace",
        "Creates textile and fashion design workshop environment",
        ("textiles", "fashion", "sewing", "design"),
    ),
    DepartmentTransform(
        "carpentry",
        "Carpentry",
        "Woodworking",
        "Transform background to carpentry workshop with wood planks, saws, chisels, workbenches, wood shavings, "
        "measuring tools, safety equipment, natural lighting, woodworking atmosphere, lumber storage",
        "Adds woodworking shop context with tools and wood materials",
        ("woodwork", "tools", "lumber", "craft"),
    ),
    DepartmentTransform(
        "motor-vehicle",
        "Motor Vehicle",
        "Automotive",
        "Transform scene to automotive workshop with car parts, tools, garage lift, oil stains, tire racks, "
        "engine components, diagnostic equipment, workshop floor, industrial garage atmosphere",
        "Creates automotive repair shop environment",
        ("automotive", "garage", "repairs", "tools"),
    ),
    DepartmentTransform(
        "ict",
        "ICT",
        "Technology",
        "Transform background to modern IT workspace with computers, monitors, cables, servers, network equipment, "
        "coding environment, digital displays, tech laboratory atmosphere, clean tech environment",
        "Adds information technology and computer lab context",
        ("technology", "computers", "networking", "digital"),
    ),
    DepartmentTransform(
        "secretarial",
        "Secretarial",
        "Administrative",
        "Transform scene to professional office environment with desks, filing cabinets, documents, typewriters, "
        "office supplies, business atmosphere, administrative workspace, organized office setting",
        "Creates traditional administrative office environment",
        ("office", "administration", "business", "documents"),
    ),
    DepartmentTransform(
        "plumbing",
        "Plumbing",
        "Utilities",
        "Transform background to plumbing workshop with pipes, fittings, water systems, plumbing tools, "
        "copper tubes, bathroom fixtures, workshop sink, utilities installation atmosphere",
        "Adds plumbing and utilities workshop context",
        ("plumbing", "pipes", "utilities", "installation"),
    ),
    DepartmentTransform(
        "electrical",
        "Electrical",
        "Utilities",
        "Transform scene to electrical workshop with wire coils, electrical panels, circuit boards, "
        "testing equipment, safety gear, electrical components, power tools, electrical laboratory atmosphere",
        "Creates electrical engineering workshop environment",
        ("electrical", "wiring", "circuits", "power"),
    ),
    DepartmentTransform(
        "cosmetology",
        "Cosmetology",
        "Beauty",
        "Transform background to beauty salon with hair styling chairs, mirrors, beauty products, "
        "makeup stations, spa equipment, professional lighting, beauty treatment atmosphere, wellness environment",
        "Adds cosmetology and beauty salon context",
        ("beauty", "salon", "cosmetics", "wellness"),
    ),
    DepartmentTransform(
        "drafting",
        "Drafting & Design",
        "Technical Drawing",
        "Transform scene to technical drafting workspace with drawing boards, architectural plans, rulers, "
        "compasses, technical instruments, design sketches, precision drawing atmosphere, "
        "professional drafting environment",
        "Creates technical drawing and design workspace",
        ("drafting", "design", "technical", "drawing"),
    ),
)

# Display grouping: group name -> department ids
DEPARTMENT_CATEGORIES: dict[str, tuple[str, ...]] = {
    "Mechanical & Metalworking": ("fitter-turning", "welding", "carpentry"),
    "Construction & Utilities": ("masonry", "plumbing", "electrical"),
    "Service Industries": ("tailoring", "motor-vehicle", "cosmetology"),
    "Technology & Office": ("ict", "secretarial", "drafting"),
}

_DEPARTMENTS_BY_ID = {d.id: d for d in DEPARTMENT_TRANSFORMS}


def get_style(style_id: str | None) -> StylePreset | None:
    if not style_id:
        return None
    return _BY_ID.get(style_id)


def get_department(department_id: str | None) -> DepartmentTransform | None:
    if not department_id:
        return None
    return _DEPARTMENTS_BY_ID.get(department_id)


def apply_style(
    prompt: str,
    style_id: str | None,
    enhancement: str = "",
    department_id: str | None = None,
) -> str:
    """Append the department scene, the base enhancement and the style's prompt fragment.

    Unknown ids and empty parts are skipped.
    """
    parts = [prompt.strip()]
    department = get_department(department_id)
    if department:
        parts.append(department.prompt)
    if enhancement:
        parts.append(enhancement)
    style = get_style(style_id)
    if style and style.prompt:
        parts.append(style.prompt)
    return ", ".join(p for p in parts if p)
