import pytest
from pathlib import Path
from types import SimpleNamespace

from Utility.Config import load_config, build_dynamic_config
from Module.Template import TemplateData, ITemplateStorage, IResidualObserver


@pytest.mark.parametrize(
    argnames=["file_name"],
    argvalues=[(str(f),) for f in Path("./Config/Template").rglob("*.yaml")])
def test_template_config(file_name: str):
    cfg, _ = load_config(Path(file_name))
    TemplateData.is_valid_config(cfg)


def test_missing_config_file():
    with pytest.raises(FileNotFoundError):
        load_config(Path("./Config/Template/DoesNotExist.yaml"))


def test_invalid_template_config():
    cfg, _ = load_config(Path("./Config/Template/RawIntensity.yaml"))

    cfg.dtype = "fp8"
    with pytest.raises(ValueError):
        TemplateData.is_valid_config(cfg)

    cfg.dtype = "fp32"
    cfg.selector.unknown_key = 1
    with pytest.raises(KeyError):
        TemplateData.is_valid_config(cfg)

    del cfg.selector.unknown_key
    cfg.channels.type = "Census"
    with pytest.raises(KeyError):
        TemplateData.is_valid_config(cfg)


def test_capability_configs():
    ITemplateStorage.is_valid_config(SimpleNamespace(type="PointMajorStorage", args=SimpleNamespace(pad=0)))
    with pytest.raises(ValueError):
        ITemplateStorage.is_valid_config(SimpleNamespace(type="ChannelMajorStorage", args=SimpleNamespace(pad=-1)))
    with pytest.raises(KeyError):
        IResidualObserver.is_valid_config(SimpleNamespace(type="LoggingObserver", args=SimpleNamespace(max_lines=1)))


def test_dynamic_config_include(tmp_path: Path):
    (tmp_path / "channels.yaml").write_text("type: BitPlanes\nargs:\n  sigma_ct: 0.5\n  sigma_bp: 1.0\n")
    (tmp_path / "template.yaml").write_text(
        Path("./Config/Template/RawIntensity.yaml").read_text().replace("channels:\n  type: RawIntensity", "channels: !include channels.yaml")
    )
    cfg, _ = load_config(tmp_path / "template.yaml")
    assert cfg.channels.type == "BitPlanes"
    assert cfg.channels.args.sigma_bp == 1.0
    TemplateData.is_valid_config(cfg)

    cfg, raw = build_dynamic_config({"selector": {"nms_radius": 2, "min_pixels_for_nms": 0}})
    assert cfg.selector.nms_radius == 2 and raw["selector"]["min_pixels_for_nms"] == 0


def test_load_from_fragment(tmp_path: Path):
    from Utility.Config import LoadFrom
    (tmp_path / "storage.yaml").write_text("type: PointMajorStorage\nargs:\n  pad: 8\n")
    _, raw = load_config(Path("./Config/Template/RawIntensity.yaml"))

    raw["storage"] = LoadFrom(tmp_path / "storage.yaml")
    cfg, resolved = build_dynamic_config(raw)
    assert isinstance(raw["storage"], LoadFrom)
    assert resolved["storage"]["args"]["pad"] == 8
    assert cfg.storage.type == "PointMajorStorage"
    TemplateData.is_valid_config(cfg)


def test_override_config():
    from Utility.Config import override_config
    cfg, _ = load_config(Path("./Config/Template/BitPlanes.yaml"))
    override_config(cfg, ["dtype=fp64", "selector.nms_radius=3", "channels.args.sigma_bp=0", "storage.args.pad=4"])
    assert cfg.dtype == "fp64"
    assert cfg.selector.nms_radius == 3
    assert cfg.channels.args.sigma_bp == 0
    assert cfg.storage.args.pad == 4
    TemplateData.is_valid_config(cfg)

    with pytest.raises(ValueError):
        override_config(cfg, ["dtype"])


@pytest.mark.parametrize(argnames=["storage_type"], argvalues=[("ChannelMajorStorage",), ("PointMajorStorage",)])
def test_storage_config_dispatch(storage_type: str):
    # The interface dispatches on `type`, the layout itself checks `args`
    ITemplateStorage.is_valid_config(SimpleNamespace(type=storage_type, args=SimpleNamespace(pad=4)))
    ITemplateStorage.get_class(storage_type).is_valid_config(SimpleNamespace(pad=1))

    with pytest.raises(KeyError):
        ITemplateStorage.is_valid_config(SimpleNamespace(type=storage_type, args=SimpleNamespace()))
    with pytest.raises(ValueError):
        ITemplateStorage.is_valid_config(SimpleNamespace(pad=1))
    with pytest.raises(KeyError):
        ITemplateStorage.is_valid_config(SimpleNamespace(type="RowMajorStorage", args=SimpleNamespace(pad=1)))
