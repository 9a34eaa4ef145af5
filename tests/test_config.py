"""
Module: tests.test_config
Purpose: Configuration defaults, YAML overrides and the ImageGenerator facade
"""

from pathlib import Path

import pytest

from fakes import make_config, make_pipeline
from sd_sampler import config as config_module
from sd_sampler.config import Config, get_config, reset_config
from sd_sampler.core import ImageGenerator
from sd_sampler.errors import InferenceFailure, ResourceLoadFailure


def test_defaults():
    config = Config()

    generation = config.default_generation_config()
    assert (generation.steps, generation.batch_size, generation.width, generation.height, generation.seed) == (
        50, 1, 512, 512, 0
    )
    assert config.vocab_path == config.resources_dir / "clip_vocab.json"


def test_overrides_ignore_none():
    generation = Config().default_generation_config(steps=20, seed=None, width=768)

    assert generation.steps == 20
    assert generation.seed == 0
    assert generation.width == 768


def test_yaml_overrides_merge_sections(tmp_path):
    config_file = tmp_path / "local.yaml"
    config_file.write_text(
        "sampling:\n"
        "  steps: 25\n"
        "pipeline:\n"
        "  vocab_path: /opt/vocab.json\n"
        "device: cpu\n"
    )

    config = Config(config_file)

    assert config.sampling["steps"] == 25
    assert config.sampling["width"] == 512
    assert config.vocab_path == Path("/opt/vocab.json")
    assert config.device == "cpu"


def test_get_config_reads_env_file(tmp_path, monkeypatch):
    config_file = tmp_path / "custom.yaml"
    config_file.write_text("sampling:\n  seed: 99\n")
    monkeypatch.setenv(config_module.CONFIG_ENV_VAR, str(config_file))

    reset_config()
    try:
        assert get_config().sampling["seed"] == 99
    finally:
        reset_config()


def test_generator_saves_with_prompt_name(tmp_path):
    gen = ImageGenerator(pipeline=make_pipeline(), config=make_config(tmp_path))

    image = gen.generate("a photo of a cat!", num_inference_steps=2, width=64, height=64, seed=1)
    image_again = gen.generate("a photo of a cat!", num_inference_steps=2, width=64, height=64, seed=1)

    assert image.size == (64, 64)
    assert image_again.size == (64, 64)
    assert (tmp_path / "a_photo_of_a_cat.png").exists()
    assert (tmp_path / "a_photo_of_a_cat_1.png").exists()
    assert gen.last_saved_path == tmp_path / "a_photo_of_a_cat_1.png"


def test_generator_rejects_empty_prompt(tmp_path):
    gen = ImageGenerator(pipeline=make_pipeline(), config=make_config(tmp_path))

    with pytest.raises(ValueError):
        gen.generate("   ")


def test_generator_batch(tmp_path):
    gen = ImageGenerator(pipeline=make_pipeline(), config=make_config(tmp_path))

    images = gen.generate_batch(["a cat", "a dog"], num_inference_steps=2, width=64, height=64, auto_save=False)

    assert len(images) == 2
    assert list(tmp_path.iterdir()) == []


def test_generator_setup_failure_surfaces_on_first_use(tmp_path):
    """A missing vocabulary fails while building the pipeline, before any sampling."""
    gen = ImageGenerator(config=make_config(tmp_path / "out", resources_dir=tmp_path / "empty"))

    with pytest.raises(ResourceLoadFailure):
        gen.generate("a cat", num_inference_steps=2)

    assert not gen.is_loaded


def test_generator_unload(tmp_path):
    pipeline = make_pipeline()
    gen = ImageGenerator(pipeline=pipeline, config=make_config(tmp_path))

    gen.unload_models()

    assert not gen.is_loaded
    assert pipeline.engines.decoder.unloaded



def test_generator_returns_path_per_call(tmp_path):
    gen = ImageGenerator(pipeline=make_pipeline(), config=make_config(tmp_path))

    _, first = gen.generate_with_path("a cat", num_inference_steps=2, width=64, height=64)
    _, second = gen.generate_with_path("a dog", num_inference_steps=2, width=64, height=64)
    _, unsaved = gen.generate_with_path("a sun", num_inference_steps=2, width=64, height=64, auto_save=False)

    assert first == tmp_path / "a_cat.png"
    assert second == tmp_path / "a_dog.png"
    assert unsaved is None


def test_generator_keep_loaded_false_unloads_after_generation(tmp_path):
    pipeline = make_pipeline()
    config = make_config(tmp_path)
    config.pipeline["keep_loaded"] = False
    gen = ImageGenerator(pipeline=pipeline, config=config)

    image = gen.generate("a cat", num_inference_steps=2, width=64, height=64)

    assert image.size == (64, 64)
    assert pipeline.engines.decoder.unloaded
    assert not gen.is_loaded


def test_generator_keep_loaded_false_unloads_after_failure(tmp_path):
    pipeline = make_pipeline(fail_on_call=1)
    config = make_config(tmp_path)
    config.pipeline["keep_loaded"] = False
    gen = ImageGenerator(pipeline=pipeline, config=config)

    with pytest.raises(InferenceFailure):
        gen.generate("a cat", num_inference_steps=2, width=64, height=64)

    assert not gen.is_loaded


def test_generator_keeps_pipeline_loaded_by_default(tmp_path):
    pipeline = make_pipeline()
    gen = ImageGenerator(pipeline=pipeline, config=make_config(tmp_path))

    gen.generate("a cat", num_inference_steps=2, width=64, height=64)

    assert gen.is_loaded
    assert not pipeline.engines.decoder.unloaded
