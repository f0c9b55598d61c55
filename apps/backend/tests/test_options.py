import pytest

from optimizer.config import ImageConfig
from optimizer.errors import ValidationError
from optimizer.pipeline.options import canonical_options, normalize_options, round_half_up, validate_options
from optimizer.pipeline.types import CompressionLevel, ImageAsset, ResizeMode


def _asset(width: int, height: int) -> ImageAsset:
    return ImageAsset(
        data=b"",
        width=width,
        height=height,
        color_space="srgb",
        source_format="jpeg",
        mime_type="image/jpeg",
    )


def test_defaults_fill_every_field(image_config: ImageConfig) -> None:
    options = normalize_options(None, _asset(100, 100), image_config)

    assert options.compression_level is CompressionLevel.LOSSY
    assert options.resize_mode is ResizeMode.NONE
    assert options.resize_width is None
    assert options.resize_height is None
    assert options.convert_cmyk_to_rgb is True
    assert options.keep_exif is False
    assert options.target_format == "webp"
    assert options.quality == 80


def test_max_width_expands_to_contain_resize(image_config: ImageConfig) -> None:
    options = normalize_options({"maxWidth": 1000}, _asset(2000, 1000), image_config)

    assert options.resize_mode is ResizeMode.CONTAIN
    assert options.resize_width == 1000
    assert options.resize_height == 500


def test_max_width_rounds_half_up(image_config: ImageConfig) -> None:
    # 333 * 3 / 2 = 499.5
    options = normalize_options({"maxWidth": 3}, _asset(2, 333), image_config)
    assert options.resize_height == 500
    assert round_half_up(2.5) == 3


def test_explicit_resize_width_wins_over_max_width(image_config: ImageConfig) -> None:
    options = normalize_options(
        {"maxWidth": 1000, "resizeWidth": 300, "resizeMode": "cover"},
        _asset(2000, 1000),
        image_config,
    )

    assert options.resize_mode is ResizeMode.COVER
    assert options.resize_width == 300
    assert options.resize_height is None


def test_legacy_field_names_and_codes(image_config: ImageConfig) -> None:
    options = normalize_options(
        {
            "lossy": "2",
            "resize": "4",
            "resize_width": "320",
            "resize_height": "240",
            "cmyk2rgb": "0",
            "keep_exif": "1",
            "convertto": "+avif",
            "quality": "55",
        },
        _asset(640, 480),
        image_config,
    )

    assert options.compression_level is CompressionLevel.GLOSSY
    assert options.resize_mode is ResizeMode.SMART_CROP
    assert (options.resize_width, options.resize_height) == (320, 240)
    assert options.convert_cmyk_to_rgb is False
    assert options.keep_exif is True
    assert options.target_format == "+avif"
    assert options.quality == 55


def test_canonical_options_drops_empty_values() -> None:
    assert canonical_options({"convertto": "", "quality": None, "resize": 1}) == {"resizeMode": 1}


def test_validate_options_accepts_good_input(image_config: ImageConfig) -> None:
    validate_options(
        {"compressionLevel": "glossy", "resizeMode": "contain", "resizeWidth": 10, "quality": 100},
        image_config,
    )


def test_validate_options_lists_every_problem(image_config: ImageConfig) -> None:
    with pytest.raises(ValidationError) as excinfo:
        validate_options(
            {
                "compression": 7,
                "resize": 3,
                "convertto": "+bmp",
                "quality": 0,
            },
            image_config,
        )

    errors = excinfo.value.errors
    assert len(errors) == 4
    assert errors[0].startswith("Compression must be")
    assert "resizeWidth or resizeHeight" in errors[1]
    assert errors[2].startswith("Format must be one of")
    assert errors[3] == "Quality must be between 1 and 100"


def test_validate_options_rejects_non_positive_dimensions(image_config: ImageConfig) -> None:
    with pytest.raises(ValidationError) as excinfo:
        validate_options({"resizeMode": "contain", "resizeWidth": "-5"}, image_config)
    assert excinfo.value.errors == ["resizeWidth must be a positive integer"]


@pytest.mark.parametrize("fmt", ["webp", "+avif", "-png", "jpg"])
def test_validate_options_accepts_formats_the_engine_resolves(image_config: ImageConfig, fmt: str) -> None:
    validate_options({"targetFormat": fmt}, image_config)


@pytest.mark.parametrize("fmt", ["WEBP", "++png", "tiff"])
def test_validate_options_rejects_formats_the_engine_ignores(image_config: ImageConfig, fmt: str) -> None:
    with pytest.raises(ValidationError) as excinfo:
        validate_options({"targetFormat": fmt}, image_config)
    assert excinfo.value.errors[0].startswith("Format must be one of")
