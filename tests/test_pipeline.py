"""
Module: tests.test_pipeline
Purpose: Sampling orchestration: call order, sizes, seeding and failure handling

Runs the full pipeline against in-memory engines, so no model weights are
needed. Run directly for a verbose report:

    python tests/test_pipeline.py
"""

import sys
import threading

import numpy as np
import pytest

from fakes import VOCAB, make_pipeline
from sd_sampler.errors import InferenceFailure, ShapeMismatch
from sd_sampler.pipeline import GenerationConfig, StableDiffusionPipeline


def _kinds(calls):
    return [call[0] for call in calls]


def test_end_to_end_call_order():
    """20 steps: encode, then 20 predictor+scheduler pairs, then one decode."""
    print("\n" + "=" * 60)
    print("TEST: End-to-end call order (20 steps, 512x512, seed 42)")
    print("=" * 60)

    pipe = make_pipeline()
    config = GenerationConfig(steps=20, width=512, height=512, seed=42)

    image = pipe.generate("a photo of a cat", config=config)

    kinds = _kinds(pipe.calls)
    assert kinds[0] == "encode"
    assert kinds[1:41] == ["predict", "step"] * 20
    assert kinds[41:] == ["decode"]

    predicted = [t for kind, t in pipe.calls if kind == "predict"]
    stepped = [t for kind, t in pipe.calls if kind == "step"]
    assert predicted == list(pipe.scheduler.timesteps[:20])
    assert stepped == predicted

    assert image.size == (512, 512)
    print(f"✓ {len(predicted)} steps, image {image.size}")


def test_non_square_size_preserved():
    pipe = make_pipeline()

    image = pipe.generate("a photo of a cat", config=GenerationConfig(steps=3, width=768, height=512, seed=1))

    assert image.size == (768, 512)
    decode_shape = pipe.calls[-1][1]
    assert decode_shape == (1, 4, 64, 96)


def test_batch_returns_one_image_per_latent():
    pipe = make_pipeline()

    images = pipe.generate_images("a cat", config=GenerationConfig(steps=2, batch_size=3, width=64, height=64, seed=7))

    assert len(images) == 3
    assert all(image.size == (64, 64) for image in images)


def test_same_seed_same_latent():
    shape = (1, 4, 64, 64)

    first = StableDiffusionPipeline.generate_latents(shape, seed=42)
    second = StableDiffusionPipeline.generate_latents(shape, seed=42)

    assert first.shape == shape
    assert first.data.tobytes() == second.data.tobytes()
    assert first.data.min() >= -1.0 and first.data.max() <= 1.0


def test_different_seeds_differ():
    shape = (1, 4, 8, 8)

    assert StableDiffusionPipeline.generate_latents(shape, 1) != StableDiffusionPipeline.generate_latents(shape, 2)


def test_seed_zero_is_not_reproducible():
    shape = (1, 4, 64, 64)

    first = StableDiffusionPipeline.generate_latents(shape, seed=0)
    second = StableDiffusionPipeline.generate_latents(shape, seed=0)

    assert not np.array_equal(first.data, second.data)


def test_seeded_generation_is_reproducible():
    config = GenerationConfig(steps=5, width=64, height=64, seed=1234)

    first = np.array(make_pipeline().generate("a cat", config=config))
    second = np.array(make_pipeline().generate("a cat", config=config))

    assert np.array_equal(first, second)


def test_predictor_failure_on_step_five():
    """A failure on step 5 of 20 aborts before decoding, with no image."""
    print("\n" + "=" * 60)
    print("TEST: Predictor failure on step 5 of 20")
    print("=" * 60)

    pipe = make_pipeline(fail_on_call=5)
    states = []

    with pytest.raises(InferenceFailure) as excinfo:
        pipe.generate("a photo of a cat", config=GenerationConfig(steps=20, seed=42), progress_callback=states.append)

    assert excinfo.value.step == 5
    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert _kinds(pipe.calls).count("predict") == 5
    assert _kinds(pipe.calls).count("step") == 4
    assert "decode" not in _kinds(pipe.calls)

    assert states[-1].status == "failed"
    assert states[-1].image is None
    assert states[-1].error is excinfo.value
    print(f"✓ Raised: {excinfo.value}")


def test_decoder_failure():
    pipe = make_pipeline(decoder_fail=True)

    with pytest.raises(InferenceFailure):
        pipe.generate("a cat", config=GenerationConfig(steps=2, width=64, height=64))


def test_predictor_shape_mismatch():
    pipe = make_pipeline(wrong_shape=True)

    with pytest.raises(ShapeMismatch):
        pipe.generate("a cat", config=GenerationConfig(steps=2, width=64, height=64))

    assert "step" not in _kinds(pipe.calls)


def test_negative_prompt_encoded_before_sampling():
    pipe = make_pipeline()

    pipe.generate("a cat", negative_prompt="blurry bad quality", config=GenerationConfig(steps=2, width=64, height=64))

    kinds = _kinds(pipe.calls)
    assert kinds[:2] == ["encode", "encode"]
    assert kinds[2] == "predict"
    encoded = {ids[1] for kind, ids in pipe.calls if kind == "encode"}
    assert encoded == {VOCAB["a"], VOCAB["blurry"]}


def test_negative_prompt_failure_aborts():
    pipe = make_pipeline(encoder_fail_on=VOCAB["blurry"])

    with pytest.raises(InferenceFailure):
        pipe.generate("a cat", negative_prompt="blurry", config=GenerationConfig(steps=2, width=64, height=64))

    assert "predict" not in _kinds(pipe.calls)


def test_encode_failure_waits_for_other_branch():
    """A failing prompt branch must not leave the negative branch inside the encoder."""
    pipe = make_pipeline(encoder_fail_on=VOCAB["cat"], encoder_slow_on=VOCAB["blurry"], encoder_delay=0.3)
    config = GenerationConfig(steps=2, width=64, height=64)

    with pytest.raises(InferenceFailure):
        pipe.generate("a cat", negative_prompt="blurry", config=config)

    assert pipe.engines.text_encoder.active == 0
    assert not pipe._lock.locked()


def test_callback_failure_on_completion_reports_failed():
    pipe = make_pipeline()
    states = []

    def on_progress(state):
        states.append(state)
        if state.status == "completed":
            raise RuntimeError("viewer closed")

    with pytest.raises(RuntimeError, match="viewer closed"):
        pipe.generate("a cat", config=GenerationConfig(steps=2, width=64, height=64), progress_callback=on_progress)

    assert [state.status for state in states[-2:]] == ["completed", "failed"]
    assert str(states[-1].error) == "viewer closed"


def test_progress_states():
    pipe = make_pipeline()
    states = []

    pipe.generate("a cat", config=GenerationConfig(steps=4, width=64, height=64, seed=3), progress_callback=states.append)

    statuses = [state.status for state in states]
    assert statuses == ["encoding"] + ["denoising"] * 4 + ["decoding", "completed"]
    assert [state.step for state in states[1:5]] == [1, 2, 3, 4]
    assert states[4].progress == pytest.approx(1.0)
    assert states[-1].image is not None
    assert states[-1].image.size == (64, 64)


@pytest.mark.parametrize("config", [
    GenerationConfig(steps=0),
    GenerationConfig(steps=51),
    GenerationConfig(batch_size=0),
    GenerationConfig(width=500),
    GenerationConfig(height=0),
    GenerationConfig(seed=-1),
    GenerationConfig(seed=2 ** 32),
])
def test_invalid_config_rejected_before_engine_calls(config):
    pipe = make_pipeline()

    with pytest.raises(ValueError):
        pipe.generate("a cat", config=config)

    assert pipe.calls == []


def test_concurrent_generations_are_serialized():
    pipe = make_pipeline()
    config = GenerationConfig(steps=10, width=64, height=64, seed=5)
    errors = []

    def run():
        try:
            pipe.generate("a cat", config=config)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=run) for _ in range(3)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert pipe.engines.noise_predictor.max_active == 1

    # Each run's steps stay contiguous: encode, 10 pairs, decode
    kinds = _kinds(pipe.calls)
    run_length = 1 + 20 + 1
    assert len(kinds) == 3 * run_length
    for start in range(0, len(kinds), run_length):
        chunk = kinds[start:start + run_length]
        assert chunk == ["encode"] + ["predict", "step"] * 10 + ["decode"]


def test_unload_releases_engines():
    pipe = make_pipeline()

    pipe.unload()

    assert pipe.engines.decoder.unloaded


if __name__ == "__main__":
    sys.exit(pytest.main([__file__, "-v", "-s"]))
