import argparse
import json
import sys
from collections.abc import Callable
from pathlib import Path

import pytest

GENERATOR_DIR = Path(__file__).resolve().parent.parent
if str(GENERATOR_DIR) not in sys.path:
    sys.path.insert(0, str(GENERATOR_DIR))

import shadergen  # noqa: E402


def scalar(name: str, offset: int | None = None, size: int = 4, scalar_type: str = "float32") -> dict:
    raw: dict[str, object] = {"kind": "scalar", "field_name": name, "scalar_type": scalar_type}
    if offset is not None:
        raw["binding"] = {"offset": offset, "size": size}
    return raw


def vector(name: str, count: int, offset: int | None = None, size: int | None = None) -> dict:
    raw: dict[str, object] = {
        "kind": "vector",
        "field_name": name,
        "element_type": "float32",
        "element_count": count,
    }
    if offset is not None:
        raw["binding"] = {"offset": offset, "size": count * 4 if size is None else size}
    return raw


def matrix(name: str, rows: int, cols: int, offset: int, size: int) -> dict:
    return {
        "kind": "matrix",
        "field_name": name,
        "element_type": "float32",
        "row_count": rows,
        "column_count": cols,
        "binding": {"offset": offset, "size": size},
    }


def struct(name: str, type_name: str, fields: list[dict], offset: int | None = None, size: int = 0) -> dict:
    raw: dict[str, object] = {
        "kind": "struct",
        "field_name": name,
        "type_name": type_name,
        "fields": fields,
    }
    if offset is not None:
        raw["binding"] = {"offset": offset, "size": size}
    return raw


def texture(name: str) -> dict:
    return {"kind": "resource", "field_name": name, "resource_shape": "texture_2d"}


def storage_buffer(name: str, type_name: str, fields: list[dict]) -> dict:
    return {
        "kind": "resource",
        "field_name": name,
        "resource_shape": "structured_buffer",
        "result_type": {"kind": "struct", "type_name": type_name, "fields": fields},
    }


def scalar_storage_buffer(name: str, scalar_type: str = "float32") -> dict:
    return {
        "kind": "resource",
        "field_name": name,
        "resource_shape": "structured_buffer",
        "result_type": {"kind": "scalar", "scalar_type": scalar_type},
    }


def semantic_vector(name: str, count: int, semantic: str) -> dict:
    return {
        "kind": "vector",
        "field_name": name,
        "element_type": "float32",
        "element_count": count,
        "semantic": semantic,
    }


@pytest.fixture
def make_reflection() -> Callable[..., dict]:
    def _make_reflection(
        source_file_name: str = "basic.shader.slang",
        *,
        vertex_parameters: list[dict] | None = None,
        parameter_blocks: list[tuple[str, str, list[dict]]] | None = None,
    ) -> dict:
        return {
            "source_file_name": source_file_name,
            "vertex_entry_point": {
                "entry_point_name": "vertexMain",
                "parameters": vertex_parameters or [],
            },
            "fragment_entry_point": {"entry_point_name": "fragmentMain"},
            "global_parameters": [
                {
                    "kind": "parameter_block",
                    "parameter_name": parameter_name,
                    "element_type": {"type_name": type_name, "fields": fields},
                }
                for parameter_name, type_name, fields in (parameter_blocks or [])
            ],
        }

    return _make_reflection


@pytest.fixture
def make_model(make_reflection: Callable[..., dict]) -> Callable[..., shadergen.ReflectionModel]:
    def _make_model(*args: object, **kwargs: object) -> shadergen.ReflectionModel:
        return shadergen.parse_reflection(make_reflection(*args, **kwargs))

    return _make_model


@pytest.fixture
def make_fields() -> Callable[[list[dict]], tuple[shadergen.ReflectedField, ...]]:
    def _make_fields(raw_fields: list[dict]) -> tuple[shadergen.ReflectedField, ...]:
        return tuple(
            shadergen.parse_field(raw, f"fields[{i}]") for i, raw in enumerate(raw_fields)
        )

    return _make_fields


@pytest.fixture
def reflection_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "compiled"
    directory.mkdir()
    return directory


@pytest.fixture
def write_reflection(reflection_dir: Path) -> Callable[[str, dict], Path]:
    def _write_reflection(stem: str, document: dict) -> Path:
        path = reflection_dir / f"{stem}.json"
        path.write_text(json.dumps(document, indent=2), encoding="utf-8")
        return path

    return _write_reflection


@pytest.fixture
def make_args(reflection_dir: Path, tmp_path: Path) -> Callable[..., argparse.Namespace]:
    def _make_args(**overrides: object) -> argparse.Namespace:
        base_args: dict[str, object] = {
            "reflection_dir": reflection_dir,
            "output_dir": tmp_path / "out",
            "package_name": shadergen.DEFAULT_PACKAGE_NAME,
            "shader": None,
            "list_shaders": False,
            "layout": None,
        }
        base_args.update(overrides)
        return argparse.Namespace(**base_args)

    return _make_args
