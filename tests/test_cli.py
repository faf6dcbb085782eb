from collections.abc import Callable
from dataclasses import FrozenInstanceError
from pathlib import Path

import pytest

import shadergen


def _assert_config_code(exc_info: pytest.ExceptionInfo[Exception], code: str) -> None:
    err = exc_info.value
    assert getattr(err, "code") == code
    assert getattr(err, "code") in shadergen.VALID_ERROR_CODES


def test_import_shadergen_module_smoke() -> None:
    assert callable(shadergen.main)


def test_build_argument_parser_exposes_flags_and_defaults() -> None:
    parser = shadergen.build_argument_parser()
    option_actions = {
        option: action for action in parser._actions for option in action.option_strings
    }

    expected_options = {
        "--reflection-dir",
        "--output-dir",
        "--package-name",
        "--shader",
        "--list-shaders",
        "--layout",
    }

    assert expected_options.issubset(option_actions.keys())
    assert option_actions["--reflection-dir"].default == shadergen.DEFAULT_REFLECTION_DIR
    assert option_actions["--output-dir"].default == shadergen.DEFAULT_OUTPUT_DIR
    assert option_actions["--package-name"].default == "shader_atlas"
    assert option_actions["--list-shaders"].default is False
    assert option_actions["--layout"].default is None


def test_parse_args_enforces_argparse_mutual_exclusion() -> None:
    with pytest.raises(SystemExit) as exc_info:
        shadergen.parse_args(["--list-shaders", "--layout", "ray_marching"])

    assert exc_info.value.code == 2


def test_parse_args_collects_repeated_shader_flags() -> None:
    args = shadergen.parse_args(["--shader", "sdf_2d", "--shader", "ray_marching"])

    assert args.shader == ["sdf_2d", "ray_marching"]


def test_validate_config_returns_generate_config_with_all_shaders(
    make_args: Callable[..., object],
    make_reflection: Callable[..., dict],
    write_reflection: Callable[[str, dict], Path],
    reflection_dir: Path,
    tmp_path: Path,
) -> None:
    write_reflection("b_shader", make_reflection("b_shader.shader.slang"))
    write_reflection("a_shader", make_reflection("a_shader.shader.slang"))

    config = shadergen.validate_config(make_args())

    assert isinstance(config, shadergen.GenerateConfig)
    assert config.reflection_dir == reflection_dir
    assert config.output_dir == tmp_path / "out"
    assert config.package_name == "shader_atlas"
    assert [p.name for p in config.shaders] == ["a_shader.json", "b_shader.json"]


def test_validate_config_filters_requested_shaders(
    make_args: Callable[..., object],
    make_reflection: Callable[..., dict],
    write_reflection: Callable[[str, dict], Path],
) -> None:
    write_reflection("a_shader", make_reflection("a_shader.shader.slang"))
    write_reflection("b_shader", make_reflection("b_shader.shader.slang"))

    config = shadergen.validate_config(make_args(shader=["b_shader", "b_shader"]))

    assert [p.name for p in config.shaders] == ["b_shader.json"]


def test_validate_config_missing_reflection_dir_is_path_not_found(
    make_args: Callable[..., object], tmp_path: Path
) -> None:
    with pytest.raises(shadergen.ConfigError) as exc_info:
        shadergen.validate_config(make_args(reflection_dir=tmp_path / "missing"))

    _assert_config_code(exc_info, "PATH_NOT_FOUND")
    assert exc_info.value.suggestion is not None


def test_validate_config_empty_reflection_dir_is_no_shaders_found(
    make_args: Callable[..., object],
) -> None:
    with pytest.raises(shadergen.ConfigError) as exc_info:
        shadergen.validate_config(make_args())

    _assert_config_code(exc_info, "NO_SHADERS_FOUND")


def test_validate_config_unknown_requested_shader_lists_available(
    make_args: Callable[..., object],
    make_reflection: Callable[..., dict],
    write_reflection: Callable[[str, dict], Path],
) -> None:
    write_reflection("a_shader", make_reflection("a_shader.shader.slang"))

    with pytest.raises(shadergen.ConfigError) as exc_info:
        shadergen.validate_config(make_args(shader=["nope"]))

    _assert_config_code(exc_info, "NO_SHADERS_FOUND")
    assert "a_shader" in exc_info.value.suggestion


@pytest.mark.parametrize("name", ["1bad", "has-dash", "class", ""])
def test_validate_config_rejects_invalid_package_name(
    make_args: Callable[..., object],
    make_reflection: Callable[..., dict],
    write_reflection: Callable[[str, dict], Path],
    name: str,
) -> None:
    write_reflection("a_shader", make_reflection("a_shader.shader.slang"))

    with pytest.raises(shadergen.ConfigError) as exc_info:
        shadergen.validate_config(make_args(package_name=name))

    _assert_config_code(exc_info, "INVALID_PACKAGE_NAME")


@pytest.mark.parametrize("name", ["gpu_types", "bad.name", "import"])
def test_validate_config_rejects_invalid_shader_name(
    make_args: Callable[..., object], name: str
) -> None:
    with pytest.raises(shadergen.ConfigError) as exc_info:
        shadergen.validate_config(make_args(shader=[name]))

    _assert_config_code(exc_info, "INVALID_SHADER_NAME")


def test_validate_config_inspect_with_package_name_conflicts(
    make_args: Callable[..., object],
) -> None:
    with pytest.raises(shadergen.ConfigError) as exc_info:
        shadergen.validate_config(make_args(list_shaders=True, package_name="other"))

    _assert_config_code(exc_info, "CONFLICT_GENERATE_INSPECT")


def test_validate_config_layout_returns_inspect_config_for_one_shader(
    make_args: Callable[..., object],
    make_reflection: Callable[..., dict],
    write_reflection: Callable[[str, dict], Path],
) -> None:
    write_reflection("a_shader", make_reflection("a_shader.shader.slang"))
    write_reflection("b_shader", make_reflection("b_shader.shader.slang"))

    config = shadergen.validate_config(make_args(layout="b_shader"))

    assert isinstance(config, shadergen.InspectConfig)
    assert config.command == "layout"
    assert config.layout_shader == "b_shader"
    assert [p.name for p in config.shaders] == ["b_shader.json"]


def test_validate_config_list_shaders_returns_inspect_config(
    make_args: Callable[..., object],
    make_reflection: Callable[..., dict],
    write_reflection: Callable[[str, dict], Path],
) -> None:
    write_reflection("a_shader", make_reflection("a_shader.shader.slang"))

    config = shadergen.validate_config(make_args(list_shaders=True))

    assert isinstance(config, shadergen.InspectConfig)
    assert config.command == "list-shaders"
    assert config.layout_shader is None


def test_config_error_rejects_unknown_code() -> None:
    with pytest.raises(ValueError):
        shadergen.ConfigError("NOT_A_CODE", "message")


def test_generate_config_is_frozen(tmp_path: Path) -> None:
    config = shadergen.GenerateConfig(
        reflection_dir=tmp_path, output_dir=tmp_path, package_name="atlas", shaders=()
    )

    with pytest.raises(FrozenInstanceError):
        config.package_name = "other"  # type: ignore[misc]


def test_discover_reflection_files_ignores_non_json(reflection_dir: Path) -> None:
    (reflection_dir / "b.json").write_text("{}", encoding="utf-8")
    (reflection_dir / "a.json").write_text("{}", encoding="utf-8")
    (reflection_dir / "a.spv").write_bytes(b"\x03\x02\x23\x07")
    (reflection_dir / "nested.json").mkdir()

    assert [p.name for p in shadergen.discover_reflection_files(reflection_dir)] == [
        "a.json",
        "b.json",
    ]


def test_validate_config_selects_by_source_shader_name_not_file_stem(
    make_args: Callable[..., object],
    make_reflection: Callable[..., dict],
    write_reflection: Callable[[str, dict], Path],
) -> None:
    write_reflection("compiled_1", make_reflection("ray_marching.shader.slang"))
    write_reflection("compiled_2", make_reflection("sdf_2d.shader.slang"))

    config = shadergen.validate_config(make_args(shader=["ray_marching"]))

    assert [p.name for p in config.shaders] == ["compiled_1.json"]

    with pytest.raises(shadergen.ConfigError) as exc_info:
        shadergen.validate_config(make_args(shader=["compiled_1"]))

    _assert_config_code(exc_info, "NO_SHADERS_FOUND")
    assert exc_info.value.suggestion == "Available: ray_marching, sdf_2d"


def test_validate_config_layout_matches_source_shader_name(
    make_args: Callable[..., object],
    make_reflection: Callable[..., dict],
    write_reflection: Callable[[str, dict], Path],
) -> None:
    write_reflection("out.reflection", make_reflection("basic_triangle.shader.slang"))

    config = shadergen.validate_config(make_args(layout="basic_triangle"))

    assert [p.name for p in config.shaders] == ["out.reflection.json"]


def test_select_shaders_without_source_file_name_is_malformed(
    reflection_dir: Path,
) -> None:
    (reflection_dir / "a.json").write_text("{}", encoding="utf-8")

    with pytest.raises(shadergen.ReflectionError, match="source_file_name"):
        shadergen.select_shaders(reflection_dir, ("a",))
