"""Shader interface bindings generator.

Generates GPU-compatible ctypes layouts and ordered resource manifests from
shader reflection JSON. Produces a `shader_atlas` package with one module per
shader, a shared `gpu_types` module, and an aggregate `ShaderAtlas`.

Usage:
    python shadergen.py --reflection-dir shaders/compiled --output-dir generated
"""

import argparse
import ctypes
import json
import keyword
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Generic, TypeVar

PROJECT_ROOT = Path(__file__).parent
DEFAULT_REFLECTION_DIR = PROJECT_ROOT / "shaders" / "compiled"
DEFAULT_OUTPUT_DIR = PROJECT_ROOT / "generated"
DEFAULT_PACKAGE_NAME = "shader_atlas"

SHADER_FILE_SUFFIX = ".shader.slang"
REFLECTION_FILE_SUFFIX = ".json"
GENERATOR_LABEL = "shader-bindings-gen"


# ===--- CLI config contracts ---=== #


@dataclass(frozen=True)
class GenerateConfig:
    reflection_dir: Path
    output_dir: Path
    package_name: str
    shaders: tuple[Path, ...]


@dataclass(frozen=True)
class InspectConfig:
    command: str
    layout_shader: str | None
    reflection_dir: Path
    shaders: tuple[Path, ...]


VALID_ERROR_CODES = {
    "PATH_NOT_FOUND",
    "INVALID_PACKAGE_NAME",
    "INVALID_SHADER_NAME",
    "CONFLICT_GENERATE_INSPECT",
    "NO_SHADERS_FOUND",
}
RESERVED_MODULE_NAMES = {"gpu_types"}


class ConfigError(Exception):
    def __init__(self, code: str, message: str, suggestion: str | None = None):
        if code not in VALID_ERROR_CODES:
            raise ValueError(f"Unknown config error code: {code}")
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion


def is_module_identifier(name: str) -> bool:
    return name.isidentifier() and not keyword.iskeyword(name)


def validate_package_name(name: str) -> str:
    if is_module_identifier(name):
        return name
    raise ConfigError(
        "INVALID_PACKAGE_NAME",
        f"Invalid package name: {name}",
        "Package names must be valid Python identifiers (for example shader_atlas).",
    )


def validate_shader_name(name: str) -> str:
    if is_module_identifier(name) and name not in RESERVED_MODULE_NAMES:
        return name
    raise ConfigError(
        "INVALID_SHADER_NAME",
        f"Invalid shader name: {name}",
        "Shader names must be valid Python identifiers, e.g. ray_marching.",
    )


def validate_path_exists(
    path: Path | None, flag: str, suggestion: str | None = None
) -> Path:
    if path is None:
        raise ConfigError(
            "PATH_NOT_FOUND",
            f"{flag} is required: no path provided.",
            suggestion or f"Pass the path explicitly: {flag} /path/to/resource",
        )
    if path.exists():
        return path
    raise ConfigError(
        "PATH_NOT_FOUND",
        f"Path for {flag} does not exist: {path}",
        suggestion or "Provide an existing path for this flag.",
    )


def shader_name_from_source(source_file_name: str) -> str:
    if source_file_name.endswith(SHADER_FILE_SUFFIX):
        return source_file_name.removesuffix(SHADER_FILE_SUFFIX)
    return source_file_name.split(".", maxsplit=1)[0]


def read_shader_name(path: Path) -> str:
    """Return the module name a reflection file will generate, without parsing it fully."""
    with open(path, encoding="utf-8") as f:
        raw = json.load(f)
    return shader_name_from_source(_require(raw, "source_file_name", str, path.name))


def discover_reflection_files(reflection_dir: Path) -> list[Path]:
    """Return reflection JSON files in `reflection_dir`, sorted by file name.

    Sorted order is the build order: shaders are processed sequentially and
    share one TypeRegistry, so discovery order decides which shader is
    reported first in a type conflict.
    """
    return sorted(
        (
            p
            for p in reflection_dir.iterdir()
            if p.is_file() and p.name.endswith(REFLECTION_FILE_SUFFIX)
        ),
        key=lambda p: p.name,
    )


def select_shaders(
    reflection_dir: Path, requested: tuple[str, ...]
) -> tuple[Path, ...]:
    available = discover_reflection_files(reflection_dir)
    if not available:
        raise ConfigError(
            "NO_SHADERS_FOUND",
            f"No reflection files (*{REFLECTION_FILE_SUFFIX}) in {reflection_dir}",
            "Run the shader reflection step first, or pass --reflection-dir.",
        )
    if not requested:
        return tuple(available)

    by_name: dict[str, list[Path]] = {}
    for path in available:
        by_name.setdefault(read_shader_name(path), []).append(path)
    missing = [name for name in requested if name not in by_name]
    if missing:
        raise ConfigError(
            "NO_SHADERS_FOUND",
            f"No reflection file for shader(s): {', '.join(missing)}",
            f"Available: {', '.join(sorted(by_name))}",
        )
    selected = [path for name in set(requested) for path in by_name[name]]
    return tuple(sorted(selected, key=lambda p: p.name))


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate GPU layout bindings from shader reflection JSON"
    )

    parser.add_argument("--reflection-dir", type=Path, default=DEFAULT_REFLECTION_DIR)
    parser.add_argument("--output-dir", type=Path, default=DEFAULT_OUTPUT_DIR)
    parser.add_argument("--package-name", type=str, default=DEFAULT_PACKAGE_NAME)
    parser.add_argument("--shader", action="append", default=None)

    inspect_group = parser.add_mutually_exclusive_group()
    inspect_group.add_argument("--list-shaders", action="store_true", default=False)
    inspect_group.add_argument("--layout", type=str, default=None)

    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = build_argument_parser()
    return parser.parse_args(argv)


def validate_config(args: argparse.Namespace) -> GenerateConfig | InspectConfig:
    requested = tuple(validate_shader_name(name) for name in (args.shader or ()))
    has_inspect_command = bool(args.list_shaders or args.layout)

    if has_inspect_command and args.package_name != DEFAULT_PACKAGE_NAME:
        raise ConfigError(
            "CONFLICT_GENERATE_INSPECT",
            "--package-name cannot be combined with inspection flags.",
            "Choose either generate mode or one inspection command.",
        )

    reflection_dir = validate_path_exists(
        args.reflection_dir,
        "--reflection-dir",
        "Run the shader reflection step to produce *.json files,\n"
        "or pass a custom path: --reflection-dir /your/path/to/compiled",
    )

    if has_inspect_command:
        layout_shader = None
        if args.layout is not None:
            layout_shader = validate_shader_name(args.layout)
            requested = (layout_shader,)
        return InspectConfig(
            command="list-shaders" if args.list_shaders else "layout",
            layout_shader=layout_shader,
            reflection_dir=reflection_dir,
            shaders=select_shaders(reflection_dir, requested),
        )

    return GenerateConfig(
        reflection_dir=reflection_dir,
        output_dir=args.output_dir,
        package_name=validate_package_name(args.package_name),
        shaders=select_shaders(reflection_dir, requested),
    )


def build_config(argv: list[str] | None = None) -> GenerateConfig | InspectConfig:
    return validate_config(parse_args(argv))


# ===--- Build errors ---=== #


class BuildError(Exception):
    """Fatal inconsistency that aborts the whole build."""

    code = "BUILD_ERROR"


class ReflectionError(BuildError):
    code = "MALFORMED_REFLECTION"


class UnsupportedShape(BuildError):
    code = "UNSUPPORTED_SHAPE"

    def __init__(self, field_path: str, detail: str):
        super().__init__(f"{field_path}: {detail}")
        self.field_path = field_path
        self.detail = detail


class MissingBinding(BuildError):
    code = "MISSING_BINDING"

    def __init__(self, field_path: str):
        super().__init__(f"{field_path}: field has no offset/size binding")
        self.field_path = field_path


class TypeConflict(BuildError):
    code = "TYPE_CONFLICT"

    def __init__(self, type_name: str, existing_source: str, candidate_source: str):
        super().__init__(
            f"Incompatible declarations of type '{type_name}': "
            f"{existing_source} and {candidate_source} disagree on field layout"
        )
        self.type_name = type_name
        self.existing_source = existing_source
        self.candidate_source = candidate_source


# ===--- Reflection model ---=== #


class ScalarKind(Enum):
    FLOAT32 = "float32"
    UINT32 = "uint32"
    INT32 = "int32"


class ResourceShape(Enum):
    TEXTURE_2D = "texture_2d"
    STRUCTURED_BUFFER = "structured_buffer"


class BufferKind(Enum):
    UNIFORM = "uniform"
    STORAGE = "storage"

    @property
    def layout_label(self) -> str:
        return "std140" if self is BufferKind.UNIFORM else "std430"


@dataclass(frozen=True)
class Binding:
    offset: int
    size: int


@dataclass(frozen=True)
class ScalarField:
    name: str
    kind: ScalarKind
    binding: Binding | None = None
    semantic: str | None = None


@dataclass(frozen=True)
class VectorField:
    name: str
    element_kind: ScalarKind
    element_count: int
    binding: Binding | None = None
    semantic: str | None = None


@dataclass(frozen=True)
class MatrixField:
    name: str
    element_kind: ScalarKind
    rows: int
    cols: int
    binding: Binding | None = None


@dataclass(frozen=True)
class StructType:
    type_name: str
    fields: tuple["ReflectedField", ...]


@dataclass(frozen=True)
class StructField:
    name: str
    type_name: str
    fields: tuple["ReflectedField", ...]
    binding: Binding | None = None


@dataclass(frozen=True)
class ResourceField:
    """A texture or buffer binding. Never occupies host layout space.

    Structured buffers hold either a scalar element (`result_kind`) or a
    struct element (`element_type`).
    """

    name: str
    shape: ResourceShape
    result_kind: ScalarKind | None = None
    element_type: StructType | None = None


ReflectedField = ScalarField | VectorField | MatrixField | StructField | ResourceField


@dataclass(frozen=True)
class EntryPoint:
    entry_point_name: str
    parameters: tuple[ReflectedField, ...] = ()


@dataclass(frozen=True)
class ParameterBlock:
    parameter_name: str
    element_type: StructType


@dataclass(frozen=True)
class ReflectionModel:
    source_file_name: str
    vertex_entry_point: EntryPoint
    fragment_entry_point: EntryPoint
    parameter_blocks: tuple[ParameterBlock, ...]

    @property
    def shader_name(self) -> str:
        return shader_name_from_source(self.source_file_name)


# ===--- Reflection JSON parsing ---=== #


def _require(raw: object, key: str, expected: type | tuple[type, ...], path: str):
    if not isinstance(raw, dict):
        raise ReflectionError(f"{path}: expected an object, got {type(raw).__name__}")
    if key not in raw:
        raise ReflectionError(f"{path}: missing required key '{key}'")
    value = raw[key]
    # bool is an int subclass; offsets and counts must be real integers
    if isinstance(value, bool) and bool not in (
        expected if isinstance(expected, tuple) else (expected,)
    ):
        raise ReflectionError(f"{path}.{key}: expected {expected}, got bool")
    if not isinstance(value, expected):
        raise ReflectionError(
            f"{path}.{key}: expected {getattr(expected, '__name__', expected)}, "
            f"got {type(value).__name__}"
        )
    return value


def _parse_enum(enum_cls, value: str, path: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ReflectionError(
            f"{path}: unknown {enum_cls.__name__} '{value}' (expected one of: {allowed})"
        ) from None


def _parse_identifier(raw: dict, key: str, path: str) -> str:
    name = _require(raw, key, str, path)
    if not name.isidentifier():
        raise ReflectionError(f"{path}.{key}: '{name}' is not a valid identifier")
    return name


def parse_binding(raw: dict, path: str) -> Binding | None:
    if "binding" not in raw or raw["binding"] is None:
        return None
    binding = raw["binding"]
    offset = _require(binding, "offset", int, f"{path}.binding")
    size = _require(binding, "size", int, f"{path}.binding")
    if offset < 0 or size < 0:
        raise ReflectionError(f"{path}.binding: offset and size must be non-negative")
    return Binding(offset=offset, size=size)


def _parse_semantic(raw: dict, path: str) -> str | None:
    semantic = raw.get("semantic")
    if semantic is not None and not isinstance(semantic, str):
        raise ReflectionError(f"{path}.semantic: expected str")
    return semantic


def parse_struct_type(raw: object, path: str) -> StructType:
    type_name = _parse_identifier(raw, "type_name", path)
    raw_fields = _require(raw, "fields", list, path)
    fields = tuple(
        parse_field(f, f"{path}.fields[{i}]") for i, f in enumerate(raw_fields)
    )
    return StructType(type_name=type_name, fields=fields)


def parse_field(raw: object, path: str) -> ReflectedField:
    kind = _require(raw, "kind", str, path)
    name = _parse_identifier(raw, "field_name", path)
    path = f"{path}({name})"

    if kind == "scalar":
        return ScalarField(
            name=name,
            kind=_parse_enum(ScalarKind, _require(raw, "scalar_type", str, path), path),
            binding=parse_binding(raw, path),
            semantic=_parse_semantic(raw, path),
        )
    if kind == "vector":
        return VectorField(
            name=name,
            element_kind=_parse_enum(
                ScalarKind, _require(raw, "element_type", str, path), path
            ),
            element_count=_require(raw, "element_count", int, path),
            binding=parse_binding(raw, path),
            semantic=_parse_semantic(raw, path),
        )
    if kind == "matrix":
        return MatrixField(
            name=name,
            element_kind=_parse_enum(
                ScalarKind, _require(raw, "element_type", str, path), path
            ),
            rows=_require(raw, "row_count", int, path),
            cols=_require(raw, "column_count", int, path),
            binding=parse_binding(raw, path),
        )
    if kind == "struct":
        struct_type = parse_struct_type(raw, path)
        return StructField(
            name=name,
            type_name=struct_type.type_name,
            fields=struct_type.fields,
            binding=parse_binding(raw, path),
        )
    if kind == "resource":
        shape = _parse_enum(
            ResourceShape, _require(raw, "resource_shape", str, path), path
        )
        if shape is ResourceShape.TEXTURE_2D:
            return ResourceField(name=name, shape=shape)
        result = _require(raw, "result_type", dict, path)
        result_path = f"{path}.result_type"
        result_kind = _require(result, "kind", str, result_path)
        if result_kind == "scalar":
            scalar_type = _require(result, "scalar_type", str, result_path)
            return ResourceField(
                name=name,
                shape=shape,
                result_kind=_parse_enum(ScalarKind, scalar_type, result_path),
            )
        if result_kind == "struct":
            return ResourceField(
                name=name,
                shape=shape,
                element_type=parse_struct_type(result, result_path),
            )
        raise ReflectionError(f"{result_path}: unknown result kind '{result_kind}'")

    raise ReflectionError(f"{path}: unknown field kind '{kind}'")


def parse_entry_point(raw: object, path: str) -> EntryPoint:
    name = _require(raw, "entry_point_name", str, path)
    raw_params = raw.get("parameters", [])
    if not isinstance(raw_params, list):
        raise ReflectionError(f"{path}.parameters: expected list")
    parameters = tuple(
        parse_field(p, f"{path}.parameters[{i}]") for i, p in enumerate(raw_params)
    )
    return EntryPoint(entry_point_name=name, parameters=parameters)


def parse_parameter_block(raw: object, path: str) -> ParameterBlock:
    kind = _require(raw, "kind", str, path)
    if kind != "parameter_block":
        raise ReflectionError(f"{path}: unsupported global parameter kind '{kind}'")
    return ParameterBlock(
        parameter_name=_parse_identifier(raw, "parameter_name", path),
        element_type=parse_struct_type(
            _require(raw, "element_type", dict, path), f"{path}.element_type"
        ),
    )


def parse_reflection(raw: object, origin: str = "<reflection>") -> ReflectionModel:
    """Build a ReflectionModel from decoded reflection JSON.

    Args:
        raw: Decoded JSON document for one shader.
        origin: Label used as the root of every error path, usually the file name.

    Returns:
        Immutable ReflectionModel.

    Raises:
        ReflectionError: On any missing key, wrong type, unknown kind, or a
            shader name that cannot be used as a module name.
    """
    source_file_name = _require(raw, "source_file_name", str, origin)
    raw_globals = _require(raw, "global_parameters", list, origin)
    model = ReflectionModel(
        source_file_name=source_file_name,
        vertex_entry_point=parse_entry_point(
            _require(raw, "vertex_entry_point", dict, origin),
            f"{origin}.vertex_entry_point",
        ),
        fragment_entry_point=parse_entry_point(
            _require(raw, "fragment_entry_point", dict, origin),
            f"{origin}.fragment_entry_point",
        ),
        parameter_blocks=tuple(
            parse_parameter_block(p, f"{origin}.global_parameters[{i}]")
            for i, p in enumerate(raw_globals)
        ),
    )
    if (
        not is_module_identifier(model.shader_name)
        or model.shader_name in RESERVED_MODULE_NAMES
    ):
        raise ReflectionError(
            f"{origin}: shader name '{model.shader_name}' (from "
            f"'{source_file_name}') is not usable as a module name"
        )
    return model


def load_reflection(path: Path) -> ReflectionModel:
    with open(path, encoding="utf-8") as f:
        raw = json.load(f)
    return parse_reflection(raw, origin=path.name)


# ===--- Host type mapping ---=== #


def to_snake_case(name: str) -> str:
    name = re.sub(r"(\d)D\b", r"_\1d", name)
    return re.sub(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])", "_", name).lower()


SCALAR_HOST_TYPES = {
    ScalarKind.FLOAT32: "f32",
    ScalarKind.UINT32: "u32",
    ScalarKind.INT32: "i32",
}

SCALAR_CTYPES = {
    "f32": "ctypes.c_float",
    "u32": "ctypes.c_uint32",
    "i32": "ctypes.c_int32",
}

VECTOR_HOST_TYPES = {2: "Vec2", 3: "Vec3", 4: "Vec4"}
MATRIX_HOST_TYPES = {2: "Mat2", 3: "Mat3", 4: "Mat4"}
FLOAT_ARRAY_HOST_TYPES = frozenset(VECTOR_HOST_TYPES.values()) | frozenset(
    MATRIX_HOST_TYPES.values()
)

SCALAR_SIZE = 4
MIN_STORAGE_ALIGNMENT = 4
UNIFORM_STRUCT_ALIGNMENT = 16


def host_type_name(f: ReflectedField, field_path: str) -> str:
    if isinstance(f, ScalarField):
        return SCALAR_HOST_TYPES[f.kind]
    if isinstance(f, VectorField):
        if f.element_kind is not ScalarKind.FLOAT32 or f.element_count not in VECTOR_HOST_TYPES:
            raise UnsupportedShape(
                field_path,
                f"vector not supported: type: {f.element_kind.value}, "
                f"count: {f.element_count}",
            )
        return VECTOR_HOST_TYPES[f.element_count]
    if isinstance(f, MatrixField):
        if (
            f.element_kind is not ScalarKind.FLOAT32
            or f.rows != f.cols
            or f.rows not in MATRIX_HOST_TYPES
        ):
            raise UnsupportedShape(
                field_path,
                f"matrix not supported: type: {f.element_kind.value}, "
                f"rows: {f.rows}, cols: {f.cols}",
            )
        return MATRIX_HOST_TYPES[f.rows]
    if isinstance(f, StructField):
        return f.type_name
    raise UnsupportedShape(field_path, f"no host type for {type(f).__name__}")


def host_size(f: ReflectedField) -> int:
    """Natural host footprint of a non-struct field, before any widening."""
    if isinstance(f, ScalarField):
        return SCALAR_SIZE
    if isinstance(f, VectorField):
        return f.element_count * SCALAR_SIZE
    if isinstance(f, MatrixField):
        return f.rows * f.cols * SCALAR_SIZE
    return 0


def native_alignment(f: ReflectedField) -> int:
    # vec3 is 16 under both rule sets, never 12
    if isinstance(f, VectorField):
        return 8 if f.element_count == 2 else 16
    if isinstance(f, MatrixField):
        return 16
    if isinstance(f, ScalarField):
        return SCALAR_SIZE
    return UNIFORM_STRUCT_ALIGNMENT


def align_up(offset: int, alignment: int) -> int:
    return -(-offset // alignment) * alignment


# ===--- Layout synthesis ---=== #


@dataclass(frozen=True)
class RealField:
    name: str
    type_name: str
    size: int
    alignment: int


@dataclass(frozen=True)
class PaddingField:
    index: int
    byte_count: int

    @property
    def name(self) -> str:
        return f"_padding_{self.index}"

    @property
    def type_name(self) -> str:
        return f"u8[{self.byte_count}]"

    @property
    def size(self) -> int:
        return self.byte_count


LayoutField = RealField | PaddingField


@dataclass(frozen=True)
class SynthesizedType:
    """A host type whose byte layout matches one GPU struct.

    Attributes:
        type_name: Struct name, shared across shaders through the TypeRegistry.
        fields: Real and padding fields in memory order. Their sizes sum to size.
        alignment: Struct alignment; 16 for std140, computed for std430, 4 for
            vertex input.
        size: Total byte size, a multiple of alignment.
        buffer_kind: Layout rule set, or None for a tightly packed vertex struct.
        source: Shader source file that declared this type; used in conflicts.
    """

    type_name: str
    fields: tuple[LayoutField, ...]
    alignment: int
    size: int
    buffer_kind: BufferKind | None
    source: str

    @property
    def layout_label(self) -> str:
        return self.buffer_kind.layout_label if self.buffer_kind else "vertex"

    @property
    def real_fields(self) -> tuple[RealField, ...]:
        return tuple(f for f in self.fields if isinstance(f, RealField))

    def layout_signature(self) -> tuple[int, tuple[tuple[str, str, int], ...]]:
        return self.alignment, tuple((f.name, f.type_name, f.size) for f in self.fields)

    def offsets(self) -> list[tuple[int, LayoutField]]:
        result = []
        offset = 0
        for f in self.fields:
            result.append((offset, f))
            offset += f.size
        return result


def _field_path(source: str, type_name: str, f: ReflectedField) -> str:
    return f"{source}: {type_name}.{f.name}"


def synthesize_layout(
    type_name: str,
    fields: tuple[ReflectedField, ...],
    buffer_kind: BufferKind,
    registry: "TypeRegistry",
    source: str,
) -> SynthesizedType:
    """Lay out one struct under the given buffer rule set.

    Nested structs and struct elements of structured buffers are synthesized
    recursively and registered in `registry`; the returned type itself is not
    registered (the caller decides).

    Args:
        type_name: Name of the struct being laid out.
        fields: Reflected fields in declaration order.
        buffer_kind: UNIFORM (std140) or STORAGE (std430).
        registry: Build-wide registry receiving nested types.
        source: Declaring shader source file name, for errors and conflicts.

    Returns:
        SynthesizedType with explicit padding, alignment and size.

    Raises:
        UnsupportedShape: A field shape has no layout rule.
        MissingBinding: A non-semantic field carries no offset/size.
        ReflectionError: Reported offsets overlap or sizes are not whole scalars.
        TypeConflict: Propagated from registering a nested type.
    """
    generated: list[LayoutField] = []
    current_offset = 0
    max_alignment = MIN_STORAGE_ALIGNMENT
    padding_index = 0

    for f in fields:
        path = _field_path(source, type_name, f)

        if isinstance(f, ResourceField):
            if f.shape is ResourceShape.STRUCTURED_BUFFER and f.element_type is not None:
                element = synthesize_layout(
                    f.element_type.type_name,
                    f.element_type.fields,
                    BufferKind.STORAGE,
                    registry,
                    source,
                )
                registry.register(element)
            continue

        if f.binding is None:
            if isinstance(f, VectorField) and f.semantic is not None:
                continue
            raise MissingBinding(path)

        surplus = 0
        if isinstance(f, StructField):
            nested = synthesize_layout(
                f.type_name, f.fields, buffer_kind, registry, source
            )
            registry.register(nested)
            field_type = nested.type_name
            field_alignment = (
                UNIFORM_STRUCT_ALIGNMENT
                if buffer_kind is BufferKind.UNIFORM
                else nested.alignment
            )
            # The nested type has one size everywhere; reported slack becomes padding.
            extent = nested.size
            surplus = max(0, f.binding.size - nested.size)
        else:
            field_type = host_type_name(f, path)
            field_alignment = native_alignment(f)
            extent = max(f.binding.size, host_size(f))
            if extent % SCALAR_SIZE != 0 or (
                isinstance(f, ScalarField) and extent != SCALAR_SIZE
            ):
                raise ReflectionError(
                    f"{path}: reported size {f.binding.size} does not fit {field_type}"
                )

        offset = f.binding.offset
        if offset % SCALAR_SIZE != 0:
            raise ReflectionError(f"{path}: offset {offset} is not 4-byte aligned")
        if offset < current_offset:
            raise ReflectionError(
                f"{path}: offset {offset} overlaps previous field ending at {current_offset}"
            )
        if offset > current_offset:
            generated.append(PaddingField(padding_index, offset - current_offset))
            padding_index += 1

        generated.append(
            RealField(
                name=to_snake_case(f.name),
                type_name=field_type,
                size=extent,
                alignment=field_alignment,
            )
        )
        if surplus:
            generated.append(PaddingField(padding_index, surplus))
            padding_index += 1
        current_offset = offset + extent + surplus
        max_alignment = max(max_alignment, field_alignment)

    if buffer_kind is BufferKind.UNIFORM:
        struct_alignment = UNIFORM_STRUCT_ALIGNMENT
    else:
        struct_alignment = max_alignment

    size = align_up(current_offset, struct_alignment)
    if size > current_offset:
        generated.append(PaddingField(padding_index, size - current_offset))

    assert sum(f.size for f in generated) == size, f"{type_name}: layout size mismatch"
    assert size % struct_alignment == 0, f"{type_name}: size not a multiple of alignment"

    return SynthesizedType(
        type_name=type_name,
        fields=tuple(generated),
        alignment=struct_alignment,
        size=size,
        buffer_kind=buffer_kind,
        source=source,
    )


# ===--- Type registry ---=== #


class TypeRegistry:
    """Every synthesized type of one build, deduplicated by name.

    Insertion order is dependency order: nested types are always registered
    before the types that reference them.
    """

    def __init__(self):
        self._types: dict[str, SynthesizedType] = {}
        self.duplicate_count = 0

    def register(self, candidate: SynthesizedType) -> bool:
        existing = self._types.get(candidate.type_name)
        if existing is None:
            self._types[candidate.type_name] = candidate
            return True
        if existing.layout_signature() != candidate.layout_signature():
            raise TypeConflict(candidate.type_name, existing.source, candidate.source)
        self.duplicate_count += 1
        return False

    def get(self, type_name: str) -> SynthesizedType | None:
        return self._types.get(type_name)

    def __contains__(self, type_name: str) -> bool:
        return type_name in self._types

    def __len__(self) -> int:
        return len(self._types)

    @property
    def types(self) -> tuple[SynthesizedType, ...]:
        return tuple(self._types.values())


# ===--- Entry point classification ---=== #


class DrawKind(Enum):
    INDEXED = "indexed"
    VERTEX_COUNT = "vertex-count"


class VertexFormat(Enum):
    R32G32B32_SFLOAT = "R32G32B32_SFLOAT"
    R32G32_SFLOAT = "R32G32_SFLOAT"
    R32_UINT = "R32_UINT"


VERTEX_FORMATS = {
    "Vec3": VertexFormat.R32G32B32_SFLOAT,
    "Vec2": VertexFormat.R32G32_SFLOAT,
    "u32": VertexFormat.R32_UINT,
}


@dataclass(frozen=True)
class VertexAttributeDescription:
    field_name: str
    wire_format: VertexFormat
    location: int
    offset: int


class ResourceKind(Enum):
    VERTEX_BUFFER = "vertex_buffer"
    INDEX_BUFFER = "index_buffer"
    VERTEX_COUNT = "vertex_count"
    TEXTURE = "texture"
    UNIFORM_BUFFER = "uniform_buffer"
    STORAGE_BUFFER = "storage_buffer"


@dataclass(frozen=True)
class RequiredResource:
    field_name: str
    kind: ResourceKind
    element_type: str | None = None


@dataclass(frozen=True)
class EntryPointClassification:
    draw_kind: DrawKind
    vertex_type: SynthesizedType | None
    attributes: tuple[VertexAttributeDescription, ...]
    resources: tuple[RequiredResource, ...]

    @property
    def vertex_stride(self) -> int:
        return self.vertex_type.size if self.vertex_type else 0


def synthesize_vertex_layout(
    vertex_struct: StructField, source: str
) -> tuple[SynthesizedType, tuple[VertexAttributeDescription, ...]]:
    fields: list[LayoutField] = []
    attributes: list[VertexAttributeDescription] = []
    offset = 0
    for f in vertex_struct.fields:
        path = _field_path(source, vertex_struct.type_name, f)
        if isinstance(f, (ResourceField, StructField)):
            raise UnsupportedShape(path, "vertex attribute must be a scalar or vector")
        # Semantic inputs are not vertex attributes.
        if isinstance(f, (ScalarField, VectorField)) and f.semantic is not None:
            continue
        location = len(attributes)
        type_name = host_type_name(f, path)
        if type_name not in VERTEX_FORMATS:
            raise UnsupportedShape(path, f"field without vertex format: {type_name}")
        name = to_snake_case(f.name)
        size = host_size(f)
        fields.append(RealField(name, type_name, size, SCALAR_SIZE))
        attributes.append(
            VertexAttributeDescription(name, VERTEX_FORMATS[type_name], location, offset)
        )
        offset += size

    vertex_type = SynthesizedType(
        type_name=vertex_struct.type_name,
        fields=tuple(fields),
        alignment=SCALAR_SIZE,
        size=offset,
        buffer_kind=None,
        source=source,
    )
    return vertex_type, tuple(attributes)


def classify_entry_point(
    entry_point: EntryPoint, registry: TypeRegistry, source: str
) -> EntryPointClassification:
    """Decide between indexed and vertex-count drawing for a vertex entry point.

    A per-vertex struct parameter makes the shader index-buffer driven: it
    needs `vertices` and `indices`, and its struct becomes the vertex type
    (registered in `registry`). Without one the geometry is procedural and
    only a `vertex_count` is required. Semantic parameters are ignored.

    Raises:
        UnsupportedShape: A bound non-struct parameter, a second vertex struct,
            or a vertex field without a wire format.
        TypeConflict: The vertex struct disagrees with a same-named type.
    """
    vertex_struct: StructField | None = None
    for param in entry_point.parameters:
        path = f"{source}: {entry_point.entry_point_name}({param.name})"
        if isinstance(param, StructField):
            if vertex_struct is not None:
                raise UnsupportedShape(path, "only one per-vertex struct is supported")
            vertex_struct = param
        elif isinstance(param, (ScalarField, VectorField)) and param.semantic is not None:
            continue
        else:
            raise UnsupportedShape(path, "bound vertex parameters must be a struct")

    if vertex_struct is None:
        return EntryPointClassification(
            draw_kind=DrawKind.VERTEX_COUNT,
            vertex_type=None,
            attributes=(),
            resources=(RequiredResource("vertex_count", ResourceKind.VERTEX_COUNT),),
        )

    vertex_type, attributes = synthesize_vertex_layout(vertex_struct, source)
    registry.register(vertex_type)
    return EntryPointClassification(
        draw_kind=DrawKind.INDEXED,
        vertex_type=vertex_type,
        attributes=attributes,
        resources=(
            RequiredResource(
                "vertices", ResourceKind.VERTEX_BUFFER, vertex_type.type_name
            ),
            RequiredResource("indices", ResourceKind.INDEX_BUFFER, "u32"),
        ),
    )


# ===--- Resource manifest ---=== #


@dataclass(frozen=True)
class ShaderManifest:
    """Everything the emitter needs for one shader.

    resources is in descriptor binding order: vertex-stage resources first,
    then per parameter block its uniform buffer followed by its textures and
    storage buffers in field order.
    """

    shader_name: str
    source_file_name: str
    vertex_entry_point: str
    fragment_entry_point: str
    classification: EntryPointClassification
    resources: tuple[RequiredResource, ...]

    @property
    def draw_kind(self) -> DrawKind:
        return self.classification.draw_kind

    def resources_of(self, *kinds: ResourceKind) -> tuple[RequiredResource, ...]:
        return tuple(r for r in self.resources if r.kind in kinds)


def collect_resource_fields(
    fields: tuple[ReflectedField, ...],
) -> list[RequiredResource]:
    resources: list[RequiredResource] = []
    for f in fields:
        if isinstance(f, StructField):
            resources.extend(collect_resource_fields(f.fields))
        elif isinstance(f, ResourceField):
            name = to_snake_case(f.name)
            if f.shape is ResourceShape.TEXTURE_2D:
                resources.append(RequiredResource(name, ResourceKind.TEXTURE))
            elif f.element_type is not None:
                resources.append(
                    RequiredResource(
                        name, ResourceKind.STORAGE_BUFFER, f.element_type.type_name
                    )
                )
            else:
                resources.append(
                    RequiredResource(
                        name,
                        ResourceKind.STORAGE_BUFFER,
                        SCALAR_HOST_TYPES[f.result_kind],
                    )
                )
    return resources


def build_shader_manifest(
    model: ReflectionModel, registry: TypeRegistry
) -> ShaderManifest:
    source = model.source_file_name
    classification = classify_entry_point(model.vertex_entry_point, registry, source)
    resources = list(classification.resources)

    for block in model.parameter_blocks:
        element = synthesize_layout(
            block.element_type.type_name,
            block.element_type.fields,
            BufferKind.UNIFORM,
            registry,
            source,
        )
        registry.register(element)
        resources.append(
            RequiredResource(
                f"{to_snake_case(block.parameter_name)}_buffer",
                ResourceKind.UNIFORM_BUFFER,
                element.type_name,
            )
        )
        resources.extend(collect_resource_fields(block.element_type.fields))

    seen: set[str] = set()
    for resource in resources:
        if resource.field_name in seen:
            raise ReflectionError(
                f"{source}: resource name '{resource.field_name}' is bound twice"
            )
        seen.add(resource.field_name)

    return ShaderManifest(
        shader_name=model.shader_name,
        source_file_name=source,
        vertex_entry_point=model.vertex_entry_point.entry_point_name,
        fragment_entry_point=model.fragment_entry_point.entry_point_name,
        classification=classification,
        resources=tuple(resources),
    )


# ===--- Renderer contract ---=== #
# Types referenced by generated modules. The renderer owns the storage
# behind every handle and allocates descriptors in manifest order.

ElementT = TypeVar("ElementT")


class GPUStruct(ctypes.Structure):
    """Base class of generated layouts. Subclasses set _fields_ explicitly."""

    _gpu_alignment_: int = SCALAR_SIZE
    _gpu_size_: int = 0
    _buffer_layout_: str = ""

    @classmethod
    def layout_ok(cls) -> bool:
        size = ctypes.sizeof(cls)
        return size == cls._gpu_size_ and size % cls._gpu_alignment_ == 0


@dataclass(frozen=True)
class TextureHandle:
    index: int


@dataclass(frozen=True)
class UniformBufferHandle(Generic[ElementT]):
    index: int


@dataclass(frozen=True)
class StorageBufferHandle(Generic[ElementT]):
    index: int


@dataclass(frozen=True)
class VertexAndIndexBuffers:
    vertices: list
    indices: list[int]


@dataclass(frozen=True)
class VertexCount:
    count: int


@dataclass
class PipelineConfig:
    """Generic arguments for building one pipeline.

    Handle lists are in descriptor set layout order; the renderer binds them
    in exactly this order and issues the draw call named by draw_kind.
    """

    shader: object
    draw_kind: DrawKind
    vertex_config: VertexAndIndexBuffers | VertexCount
    texture_handles: list[TextureHandle] = field(default_factory=list)
    uniform_buffer_handles: list[UniformBufferHandle] = field(default_factory=list)
    storage_buffer_handles: list[StorageBufferHandle] = field(default_factory=list)
    disable_depth_test: bool = False


# ===--- Package writer ---=== #

MODULE_TYPES: str = "gpu_types"
"""Stem of the generated module that defines every synthesized type once."""

RUNTIME_MODULE: str = Path(__file__).stem
"""Import name generated modules use for the renderer contract."""

MAX_IMPORT_LINE: int = 88


@dataclass(frozen=True)
class WriteConfig:
    """Shared generation metadata embedded in every file preamble.

    Attributes:
        package_name: Name of the generated package, e.g. "shader_atlas".
        shader_count: Number of shaders in this run.
    """

    package_name: str
    shader_count: int


@dataclass(frozen=True)
class ExternalImport:
    """Import from a module outside the generated package.

    Renders as `import <module>` when names is empty, otherwise as
    `from <module> import <name1>, <name2>, ...`.
    """

    module: str
    names: tuple[str, ...] = ()


@dataclass(frozen=True)
class SiblingImport:
    """Named import from the generated package.

    Renders as `from .<module_stem> import ...`; an empty module_stem imports
    sibling modules themselves (`from . import a, b`).
    """

    module_stem: str
    names: tuple[str, ...]


@dataclass(frozen=True)
class ModuleSpec:
    """Complete input for one generated .py module.

    Attributes:
        filename: Output filename including .py extension.
        source_label: Provenance shown in the header, e.g. the shader file.
        docstring: One-line module docstring.
        external_imports: Imports from outside the package, in order.
        sibling_imports: Imports from the package, in order.
        content_lines: Body lines without header, docstring or imports.
    """

    filename: str
    source_label: str
    docstring: str
    external_imports: tuple[ExternalImport, ...]
    sibling_imports: tuple[SiblingImport, ...]
    content_lines: tuple[str, ...]


@dataclass(frozen=True)
class FileWriteResult:
    filename: str
    path: Path
    line_count: int
    byte_count: int


@dataclass(frozen=True)
class PackageWriteResult:
    """Result of writing the generated package; files are in write order."""

    output_dir: Path
    files: tuple[FileWriteResult, ...]

    @property
    def total_lines(self) -> int:
        return sum(f.line_count for f in self.files)


_HEADER_BORDER: str = "# x-------------------------------------------x #"


def format_file_header(config: WriteConfig, source_label: str) -> list[str]:
    """Return comment-block lines for a generated module header.

    Output format:
        # x-------------------------------------------x #
        # | GENERATED FILE (do not edit directly)
        # | Generated by shader-bindings-gen
        # | Source: ray_marching.shader.slang
        # | Package: shader_atlas
        # | Shaders: 3
        # x-------------------------------------------x #

    Raises:
        ValueError: If source_label is empty.
    """
    if not source_label:
        raise ValueError("source_label must not be empty")

    return [
        _HEADER_BORDER,
        "# | GENERATED FILE (do not edit directly)",
        f"# | Generated by {GENERATOR_LABEL}",
        f"# | Source: {source_label}",
        f"# | Package: {config.package_name}",
        f"# | Shaders: {config.shader_count}",
        _HEADER_BORDER,
    ]


def _format_import_line(prefix: str, names: tuple[str, ...]) -> list[str]:
    line = f"{prefix} import {', '.join(names)}"
    if len(line) <= MAX_IMPORT_LINE:
        return [line]
    return [f"{prefix} import ("] + [f"    {name}," for name in names] + [")"]


def format_import_block(
    external_imports: tuple[ExternalImport, ...],
    sibling_imports: tuple[SiblingImport, ...],
) -> list[str]:
    """Return import statement lines for a module file.

    External imports come first; plain `import x` lines precede `from x import`
    lines. A blank line separates external from sibling imports. Lines longer
    than MAX_IMPORT_LINE are wrapped in parentheses, one name per line.

    Raises:
        ValueError: If a SiblingImport has an empty names tuple.
    """
    for imp in sibling_imports:
        if not imp.names:
            raise ValueError(
                f"SiblingImport for module '{imp.module_stem}' has empty names tuple"
            )

    lines: list[str] = []
    for imp in external_imports:
        if not imp.names:
            lines.append(f"import {imp.module}")
    for imp in external_imports:
        if imp.names:
            lines.extend(_format_import_line(f"from {imp.module}", imp.names))

    if external_imports and sibling_imports:
        lines.append("")

    for imp in sibling_imports:
        lines.extend(_format_import_line(f"from .{imp.module_stem}", imp.names))

    return lines


def assemble_module_source(config: WriteConfig, spec: ModuleSpec) -> str:
    """Assemble a complete .py module source string from a ModuleSpec.

    File structure:
        <header comment block>
        <blank>
        \"\"\"<docstring>\"\"\"
        <blank>
        from __future__ import annotations
        <blank>
        <import block>              (omitted with its blank line when empty)
        <blank>
        <blank>
        <content lines>
        <trailing newline>

    Raises:
        ValueError: If spec.filename is empty or does not end with ".py".
        ValueError: Propagated from format_import_block.
    """
    if not spec.filename or not spec.filename.endswith(".py"):
        raise ValueError(
            f"spec.filename must be non-empty and end with '.py', got {spec.filename!r}"
        )

    parts: list[str] = list(format_file_header(config, spec.source_label))
    parts.append("")
    parts.append(f'"""{spec.docstring}"""')
    parts.append("")
    parts.append("from __future__ import annotations")

    if spec.external_imports or spec.sibling_imports:
        parts.append("")
        parts.extend(format_import_block(spec.external_imports, spec.sibling_imports))

    if spec.content_lines:
        parts.append("")
        parts.append("")
        parts.extend(spec.content_lines)

    while parts and parts[-1] == "":
        parts.pop()
    return "\n".join(parts) + "\n"


def write_package(
    output_dir: Path,
    config: WriteConfig,
    module_specs: tuple[ModuleSpec, ...],
) -> PackageWriteResult:
    """Write every module of the generated package.

    All sources are assembled before the first file is written, so an invalid
    spec leaves the output directory untouched. Files are written into
    output_dir / config.package_name in the given order.

    Raises:
        ValueError: Propagated from assemble_module_source on an invalid spec.
        OSError: Propagated directly from any write failure.
    """
    contents = [(spec.filename, assemble_module_source(config, spec)) for spec in module_specs]

    package_dir = Path(output_dir) / config.package_name
    package_dir.mkdir(parents=True, exist_ok=True)
    files: list[FileWriteResult] = []
    for filename, content in contents:
        file_path = package_dir / filename
        file_path.write_text(content, encoding="utf-8")
        resolved = file_path.resolve()
        files.append(
            FileWriteResult(
                filename=filename,
                path=resolved,
                line_count=content.count("\n"),
                byte_count=len(resolved.read_bytes()),
            )
        )
    return PackageWriteResult(output_dir=package_dir, files=tuple(files))


# ===--- Code emission ---=== #


def ctype_expression(f: LayoutField) -> str:
    if isinstance(f, PaddingField):
        return f"ctypes.c_uint8 * {f.byte_count}"
    if f.type_name in SCALAR_CTYPES:
        return SCALAR_CTYPES[f.type_name]
    if f.type_name in FLOAT_ARRAY_HOST_TYPES:
        # widened to the reported extent, e.g. std140 mat3 is 12 floats
        return f"ctypes.c_float * {f.size // SCALAR_SIZE}"
    return f.type_name


def element_annotation(element_type: str) -> str:
    return SCALAR_CTYPES.get(element_type, element_type)


def generate_struct_source(struct: SynthesizedType) -> list[str]:
    lines = [
        f"class {struct.type_name}(GPUStruct):",
        f'    """{struct.layout_label} layout, {struct.size} bytes, '
        f'{struct.alignment}-byte aligned."""',
        "",
        f"    _gpu_alignment_ = {struct.alignment}",
        f"    _gpu_size_ = {struct.size}",
        f'    _buffer_layout_ = "{struct.layout_label}"',
    ]
    if struct.fields:
        lines.append("    _fields_ = [")
        for f in struct.fields:
            lines.append(f'        ("{f.name}", {ctype_expression(f)}),')
        lines.append("    ]")
    else:
        lines.append("    _fields_ = []")
    lines.append("")
    lines.append("")
    lines.append(f"assert ctypes.sizeof({struct.type_name}) == {struct.size}")
    return lines


def generate_types_module(registry: TypeRegistry) -> ModuleSpec:
    content: list[str] = []
    for struct in registry.types:
        if content:
            content.extend(["", ""])
        content.extend(generate_struct_source(struct))

    sources = sorted({t.source for t in registry.types})
    return ModuleSpec(
        filename=f"{MODULE_TYPES}.py",
        source_label=", ".join(sources) if sources else "(no shaders)",
        docstring="GPU layouts shared by every shader in the atlas.",
        external_imports=(
            ExternalImport("ctypes"),
            ExternalImport(RUNTIME_MODULE, ("GPUStruct",)),
        ),
        sibling_imports=(),
        content_lines=tuple(content),
    )


def resource_annotation(resource: RequiredResource) -> str:
    if resource.kind is ResourceKind.VERTEX_BUFFER:
        return f"list[{resource.element_type}]"
    if resource.kind is ResourceKind.INDEX_BUFFER:
        return "list[int]"
    if resource.kind is ResourceKind.VERTEX_COUNT:
        return "int"
    if resource.kind is ResourceKind.TEXTURE:
        return "TextureHandle"
    if resource.kind is ResourceKind.UNIFORM_BUFFER:
        return f"UniformBufferHandle[{element_annotation(resource.element_type)}]"
    return f"StorageBufferHandle[{element_annotation(resource.element_type)}]"


def generate_resources_source(manifest: ShaderManifest) -> list[str]:
    lines = [
        "@dataclass(frozen=True)",
        "class Resources:",
        f'    """Resources required by {manifest.source_file_name}, in binding order."""',
        "",
    ]
    for resource in manifest.resources:
        lines.append(f"    {resource.field_name}: {resource_annotation(resource)}")
    return lines


def _handle_list(name: str, resources: tuple[RequiredResource, ...]) -> list[str]:
    if not resources:
        return [f"        {name} = []"]
    lines = [f"        {name} = ["]
    for resource in resources:
        lines.append(f"            resources.{resource.field_name},")
    lines.append("        ]")
    return lines


def generate_shader_source(manifest: ShaderManifest) -> list[str]:
    classification = manifest.classification
    lines = [
        "class Shader:",
        f'    """Pipeline bindings for {manifest.source_file_name}."""',
        "",
        f'    source_file_name = "{manifest.source_file_name}"',
        f'    vertex_entry_point = "{manifest.vertex_entry_point}"',
        f'    fragment_entry_point = "{manifest.fragment_entry_point}"',
        f"    draw_kind = DrawKind.{manifest.draw_kind.name}",
    ]

    if classification.vertex_type is not None:
        lines.append(f"    vertex_type = {classification.vertex_type.type_name}")
    else:
        lines.append("    vertex_type = None")
    lines.append(f"    vertex_stride = {classification.vertex_stride}")

    if classification.attributes:
        lines.append("    vertex_attributes = (")
        for attr in classification.attributes:
            lines.append(
                f'        VertexAttributeDescription("{attr.field_name}", '
                f"VertexFormat.{attr.wire_format.name}, {attr.location}, {attr.offset}),"
            )
        lines.append("    )")
    else:
        lines.append("    vertex_attributes = ()")

    lines.append("    binding_order = (")
    for resource in manifest.resources:
        lines.append(f'        "{resource.field_name}",')
    lines.append("    )")

    lines.extend(
        [
            "",
            "    def pipeline_config(self, resources: Resources) -> PipelineConfig:",
            "        # each handle list follows the descriptor set layout order",
        ]
    )
    lines.extend(
        _handle_list("texture_handles", manifest.resources_of(ResourceKind.TEXTURE))
    )
    lines.extend(
        _handle_list(
            "uniform_buffer_handles",
            manifest.resources_of(ResourceKind.UNIFORM_BUFFER),
        )
    )
    lines.extend(
        _handle_list(
            "storage_buffer_handles",
            manifest.resources_of(ResourceKind.STORAGE_BUFFER),
        )
    )

    if manifest.draw_kind is DrawKind.INDEXED:
        lines.append(
            "        vertex_config = VertexAndIndexBuffers(resources.vertices, resources.indices)"
        )
    else:
        lines.append("        vertex_config = VertexCount(resources.vertex_count)")

    lines.extend(
        [
            "",
            "        return PipelineConfig(",
            "            shader=self,",
            "            draw_kind=self.draw_kind,",
            "            vertex_config=vertex_config,",
            "            texture_handles=texture_handles,",
            "            uniform_buffer_handles=uniform_buffer_handles,",
            "            storage_buffer_handles=storage_buffer_handles,",
            "        )",
        ]
    )
    return lines


def referenced_type_names(manifest: ShaderManifest, registry: TypeRegistry) -> list[str]:
    names = {
        r.element_type
        for r in manifest.resources
        if r.element_type is not None and r.element_type in registry
    }
    return sorted(names)


def generate_shader_module(manifest: ShaderManifest, registry: TypeRegistry) -> ModuleSpec:
    kinds = {r.kind for r in manifest.resources}
    runtime_names = {"DrawKind", "PipelineConfig"}
    if ResourceKind.TEXTURE in kinds:
        runtime_names.add("TextureHandle")
    if ResourceKind.UNIFORM_BUFFER in kinds:
        runtime_names.add("UniformBufferHandle")
    if ResourceKind.STORAGE_BUFFER in kinds:
        runtime_names.add("StorageBufferHandle")
    if manifest.draw_kind is DrawKind.INDEXED:
        runtime_names.update(
            {"VertexAndIndexBuffers", "VertexAttributeDescription", "VertexFormat"}
        )
    else:
        runtime_names.add("VertexCount")

    external: list[ExternalImport] = []
    if any(
        r.element_type in SCALAR_CTYPES
        for r in manifest.resources_of(ResourceKind.STORAGE_BUFFER)
    ):
        external.append(ExternalImport("ctypes"))
    external.append(ExternalImport("dataclasses", ("dataclass",)))
    external.append(ExternalImport(RUNTIME_MODULE, tuple(sorted(runtime_names))))

    type_names = referenced_type_names(manifest, registry)
    sibling = (SiblingImport(MODULE_TYPES, tuple(type_names)),) if type_names else ()

    content = generate_resources_source(manifest)
    content.extend(["", ""])
    content.extend(generate_shader_source(manifest))

    return ModuleSpec(
        filename=f"{manifest.shader_name}.py",
        source_label=manifest.source_file_name,
        docstring=f"Generated from shader: {manifest.source_file_name}",
        external_imports=tuple(external),
        sibling_imports=sibling,
        content_lines=tuple(content),
    )


def generate_atlas_module(manifests: tuple[ShaderManifest, ...]) -> ModuleSpec:
    names = [m.shader_name for m in manifests]
    content = [
        "@dataclass(frozen=True)",
        "class ShaderAtlas:",
        '    """One entry per shader discovered in the reflection directory."""',
        "",
    ]
    for name in names:
        content.append(f"    {name}: {name}.Shader")
    content.extend(
        [
            "",
            "    @classmethod",
            "    def init(cls) -> ShaderAtlas:",
            "        return cls(",
        ]
    )
    for name in names:
        content.append(f"            {name}={name}.Shader(),")
    content.append("        )")

    return ModuleSpec(
        filename="__init__.py",
        source_label=f"{len(names)} shader(s)",
        docstring="Shader atlas: generated bindings for every shader.",
        external_imports=(ExternalImport("dataclasses", ("dataclass",)),),
        sibling_imports=(SiblingImport("", tuple(names)),) if names else (),
        content_lines=tuple(content),
    )


# ===--- Pipeline stage boundaries ---=== #


@dataclass(frozen=True)
class AtlasBuild:
    """Complete in-memory result of one build, before anything is written.

    Attributes:
        manifests: One ShaderManifest per shader, in build order.
        registry: Build-wide registry of every synthesized type.
    """

    manifests: tuple[ShaderManifest, ...]
    registry: TypeRegistry


def build_atlas(
    shader_paths: tuple[Path, ...], registry: TypeRegistry | None = None
) -> AtlasBuild:
    """Load and synthesize every shader sequentially, sharing one registry.

    Aborts on the first BuildError; nothing is returned for a partial run.
    """
    registry = TypeRegistry() if registry is None else registry
    manifests: list[ShaderManifest] = []
    seen_names: dict[str, str] = {}
    for path in shader_paths:
        model = load_reflection(path)
        if model.shader_name in seen_names:
            raise ReflectionError(
                f"{path.name}: shader name '{model.shader_name}' already used by "
                f"{seen_names[model.shader_name]}"
            )
        seen_names[model.shader_name] = path.name
        print(f"Parsing: {path}")
        manifest = build_shader_manifest(model, registry)
        print(
            f"  {manifest.shader_name}: {manifest.draw_kind.value}, "
            f"{len(manifest.resources)} resources"
        )
        manifests.append(manifest)
    return AtlasBuild(manifests=tuple(manifests), registry=registry)


def build_module_specs(atlas: AtlasBuild) -> tuple[ModuleSpec, ...]:
    """Return specs in write order: gpu_types, one per shader, then __init__."""
    specs = [generate_types_module(atlas.registry)]
    specs.extend(generate_shader_module(m, atlas.registry) for m in atlas.manifests)
    specs.append(generate_atlas_module(atlas.manifests))
    return tuple(specs)


def run_generate(config: GenerateConfig) -> PackageWriteResult:
    """Execute the complete generation pipeline for a GenerateConfig.

    Stages: load + synthesize every shader -> assemble module specs -> write
    package -> print summary. Every shader is processed before the first write.

    Raises:
        BuildError: Any fatal layout, conflict or reflection error.
        OSError: Reflection file not readable or filesystem write failure.
        json.JSONDecodeError: Reflection file is not valid JSON.
    """
    atlas = build_atlas(config.shaders)
    print(
        f"  Registry: {len(atlas.registry)} types, "
        f"{atlas.registry.duplicate_count} duplicate declarations merged"
    )

    write_config = WriteConfig(
        package_name=config.package_name, shader_count=len(atlas.manifests)
    )
    module_specs = build_module_specs(atlas)
    result = write_package(config.output_dir, write_config, module_specs)
    print(
        f"  Written: {len(result.files)} files, "
        f"{result.total_lines} lines to {result.output_dir}"
    )

    summary = build_generation_summary(config, atlas, result)
    print_generation_summary(summary)
    return result


# ===--- Inspection commands ---=== #


def format_shader_table(atlas: AtlasBuild, reflection_dir: Path) -> str:
    lines = [f"Shaders in {reflection_dir}:", ""]
    for manifest in atlas.manifests:
        lines.append(
            f"  {manifest.shader_name:<24} {manifest.draw_kind.value:<14}"
            f"{len(manifest.resources):>3} resources"
        )
    lines.append("")
    return "\n".join(lines)


def format_layout_table(atlas: AtlasBuild) -> str:
    """Render every type registered while building one shader, with offsets.

    Output format:

        Layout of ray_marching.shader.slang:

          Sphere (std430, align 16, 32 bytes)
               0  center                    Vec3     12
              12  radius                    f32       4
    """
    sources = ", ".join(m.source_file_name for m in atlas.manifests)
    lines = [f"Layout of {sources}:", ""]
    for struct in atlas.registry.types:
        lines.append(
            f"  {struct.type_name} ({struct.layout_label}, align {struct.alignment}, "
            f"{struct.size} bytes)"
        )
        for offset, f in struct.offsets():
            lines.append(f"    {offset:>4}  {f.name:<24}  {f.type_name:<10}{f.size:>4}")
        lines.append("")
    return "\n".join(lines)


def run_inspect(config: InspectConfig) -> None:
    atlas = build_atlas(config.shaders)
    if config.command == "list-shaders":
        output = format_shader_table(atlas, config.reflection_dir)
    else:
        output = format_layout_table(atlas)
    print(output, end="")


# ===--- Summary report ---=== #


@dataclass(frozen=True)
class ShaderCounts:
    """Invariant: indexed + vertex_count == total."""

    total: int
    indexed: int
    vertex_count: int


@dataclass(frozen=True)
class TypeCounts:
    """Invariant: uniform + storage + vertex == emitted."""

    emitted: int
    uniform: int
    storage: int
    vertex: int
    duplicates: int


@dataclass(frozen=True)
class GenerationSummary:
    package_name: str
    source_label: str
    output_dir: str
    shaders: ShaderCounts
    types: TypeCounts
    resources: tuple[tuple[ResourceKind, int], ...]
    files: tuple[FileWriteResult, ...]


def build_shader_counts(manifests: tuple[ShaderManifest, ...]) -> ShaderCounts:
    total = len(manifests)
    indexed = sum(1 for m in manifests if m.draw_kind is DrawKind.INDEXED)
    vertex_count = total - indexed
    assert indexed + vertex_count == total
    return ShaderCounts(total=total, indexed=indexed, vertex_count=vertex_count)


def build_type_counts(registry: TypeRegistry) -> TypeCounts:
    types = registry.types
    uniform = sum(1 for t in types if t.buffer_kind is BufferKind.UNIFORM)
    storage = sum(1 for t in types if t.buffer_kind is BufferKind.STORAGE)
    vertex = sum(1 for t in types if t.buffer_kind is None)
    assert uniform + storage + vertex == len(types), (
        f"TypeCounts invariant violated: {uniform}+{storage}+{vertex}!={len(types)}"
    )
    return TypeCounts(
        emitted=len(types),
        uniform=uniform,
        storage=storage,
        vertex=vertex,
        duplicates=registry.duplicate_count,
    )


def build_resource_counts(
    manifests: tuple[ShaderManifest, ...],
) -> tuple[tuple[ResourceKind, int], ...]:
    return tuple(
        (kind, sum(len(m.resources_of(kind)) for m in manifests))
        for kind in ResourceKind
    )


def build_generation_summary(
    config: GenerateConfig, atlas: AtlasBuild, write_result: PackageWriteResult
) -> GenerationSummary:
    return GenerationSummary(
        package_name=config.package_name,
        source_label=str(config.reflection_dir),
        output_dir=str(write_result.output_dir),
        shaders=build_shader_counts(atlas.manifests),
        types=build_type_counts(atlas.registry),
        resources=build_resource_counts(atlas.manifests),
        files=write_result.files,
    )


_RESOURCE_LABELS = {
    ResourceKind.VERTEX_BUFFER: "Vertex buffers:",
    ResourceKind.INDEX_BUFFER: "Index buffers:",
    ResourceKind.VERTEX_COUNT: "Vertex counts:",
    ResourceKind.TEXTURE: "Textures:",
    ResourceKind.UNIFORM_BUFFER: "Uniform buffers:",
    ResourceKind.STORAGE_BUFFER: "Storage buffers:",
}


def format_generation_summary(summary: GenerationSummary) -> str:
    """Render a GenerationSummary as the multi-section console report.

    Returns a string with exactly one trailing newline. Line counts use
    thousands separators; the duplicates note appears only when non-zero.
    """
    lines: list[str] = []
    lines.append("Shader bindings generated:")
    lines.append("")
    lines.append(f"  Package:    {summary.package_name}")
    lines.append(f"  Source:     {summary.source_label}")
    lines.append(f"  Output:     {summary.output_dir}")
    lines.append("")

    sc = summary.shaders
    lines.append(
        f"  Shaders:  {sc.total:>6}  ({sc.indexed} indexed + "
        f"{sc.vertex_count} vertex-count)"
    )
    tc = summary.types
    type_row = (
        f"  Types:    {tc.emitted:>6}  ({tc.uniform} std140, {tc.storage} std430, "
        f"{tc.vertex} vertex)"
    )
    if tc.duplicates > 0:
        type_row += f", {tc.duplicates} duplicate declarations merged"
    lines.append(type_row)

    lines.append("")
    lines.append("  Resources:")
    for kind, count in summary.resources:
        lines.append(f"    {_RESOURCE_LABELS[kind]:<18}{count:>6}")

    lines.append("")
    lines.append("  Files written:")
    for file_result in summary.files:
        line_str = f"{file_result.line_count:>6,} lines"
        lines.append(f"    {file_result.filename:<28} {line_str}")

    total_lines = sum(f.line_count for f in summary.files)
    lines.append("")
    lines.append(f"  Total: {total_lines:,} lines across {len(summary.files)} files")
    lines.append("")

    return "\n".join(lines)


def print_generation_summary(summary: GenerationSummary) -> None:
    print(format_generation_summary(summary), end="")


# ===--- Main generation ---=== #


def main():
    try:
        config = build_config()
        if isinstance(config, InspectConfig):
            run_inspect(config)
        else:
            run_generate(config)
    except ConfigError as err:
        print(f"Config error [{err.code}]: {err.message}")
        if err.suggestion:
            print(f"Hint: {err.suggestion}")
        raise SystemExit(1) from err
    except BuildError as err:
        print(f"Build error [{err.code}]: {err}")
        raise SystemExit(1) from err
    except (OSError, json.JSONDecodeError) as err:
        print(f"Error: {err}")
        raise SystemExit(1) from err


if __name__ == "__main__":
    main()
