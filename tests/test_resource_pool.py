"""
Tests for the buffer pool, window cache and frame iterator.
"""
import numpy as np
import pytest

from masterscope.config import DEFAULT_CONFIG, AnalysisConfig
from masterscope.dsp.analysis.spectral import analyze_spectral
from masterscope.dsp_engine.resource_pool import (
    BufferPool,
    ResourcePool,
    WindowCache,
    count_frames,
    default_pool,
    iterate_frames,
    pool_for_config,
    process_frames,
)


class TestBufferPool:
    def test_acquire_rounds_up(self):
        pool = BufferPool()
        buf = pool.acquire(1000)
        assert buf.shape == (1024,)
        assert buf.dtype == np.float32
        assert not buf.any()

    def test_acquire_zero_gives_single_sample(self):
        assert BufferPool().acquire(0).shape == (1,)

    def test_released_buffer_is_reused_zeroed(self):
        pool = BufferPool()
        buf = pool.acquire(1024)
        buf[:] = 1.0
        pool.release(buf)

        again = pool.acquire(1024)
        assert again is buf
        assert not again.any()

    def test_stats(self):
        pool = BufferPool()
        buf = pool.acquire(512)
        pool.release(buf)
        pool.acquire(512)

        stats = pool.stats()
        assert stats.total_acquired == 2
        assert stats.total_released == 1
        assert stats.pooled_buffers == 0
        assert stats.hit_rate == pytest.approx(0.5)

    def test_non_power_of_two_release_is_dropped(self):
        pool = BufferPool()
        pool.release(np.zeros(1000, dtype=np.float32))
        stats = pool.stats()
        assert stats.total_released == 0
        assert stats.pooled_buffers == 0

    def test_oversize_release_is_dropped(self):
        pool = BufferPool(max_poolable_size=1024)
        pool.release(np.zeros(2048, dtype=np.float32))
        assert pool.stats().pooled_buffers == 0

    def test_per_size_limit(self):
        """Extra buffers beyond the per-size limit are not retained."""
        pool = BufferPool(max_per_size=2)
        bufs = [pool.acquire(256) for _ in range(3)]
        for b in bufs:
            pool.release(b)
        stats = pool.stats()
        assert stats.total_released == 3
        assert stats.pooled_buffers == 2

    def test_clear(self):
        pool = BufferPool()
        pool.release(pool.acquire(64))
        pool.clear()
        stats = pool.stats()
        assert stats.total_acquired == 0
        assert stats.pooled_buffers == 0
        assert stats.hit_rate == 0.0


class TestWindowCache:
    def test_hann_is_cached_and_read_only(self):
        cache = WindowCache()
        w = cache.hann(1024)
        assert cache.hann(1024) is w
        assert len(cache) == 1
        with pytest.raises(ValueError):
            w[0] = 1.0

    def test_hann_shape(self):
        w = WindowCache().hann(5)
        np.testing.assert_allclose(w, [0.0, 0.5, 1.0, 0.5, 0.0], atol=1e-7)

    def test_hann_size_one(self):
        np.testing.assert_allclose(WindowCache().hann(1), [1.0])

    def test_blackman_harris_endpoints(self):
        w = WindowCache().blackman_harris(1024)
        assert w[0] == pytest.approx(6e-5, abs=1e-6)
        assert w.max() == pytest.approx(1.0, abs=1e-3)

    def test_clear_rebuilds(self):
        cache = WindowCache()
        w = cache.hann(256)
        cache.clear()
        assert len(cache) == 0
        assert cache.hann(256) is not w


class TestResourcePool:
    def test_default_pool_is_shared(self):
        assert default_pool() is default_pool()

    def test_from_config(self):
        cfg = AnalysisConfig(pool_max_per_size=3, pool_max_poolable_size=4096)
        pool = ResourcePool.from_config(cfg)
        assert pool.buffers.max_per_size == 3
        assert pool.buffers.max_poolable_size == 4096

    def test_default_config_uses_default_pool(self):
        assert pool_for_config(None) is default_pool()
        assert pool_for_config(DEFAULT_CONFIG) is default_pool()
        assert pool_for_config(AnalysisConfig(fft_backend="radix2")) is default_pool()

    def test_same_limits_share_a_pool(self):
        a = pool_for_config(AnalysisConfig(pool_max_per_size=2))
        b = pool_for_config(AnalysisConfig(pool_max_per_size=2, frame_size=1024))
        assert a is b
        assert a is not default_pool()
        assert a.buffers.max_per_size == 2
        assert pool_for_config(AnalysisConfig(pool_max_per_size=3)) is not a

    def test_analyzer_honours_config_pool_limits(self, make_sine, sample_rate):
        """Without an explicit pool, analyzers use the pool sized by their config."""
        cfg = AnalysisConfig(pool_max_per_size=0)
        config_pool = pool_for_config(cfg)
        config_pool.clear()

        analyze_spectral(make_sine(1000, 1.0), sample_rate, cfg)

        stats = config_pool.buffers.stats()
        assert stats.total_acquired > 0
        assert stats.pooled_buffers == 0
        config_pool.clear()


class TestIterateFrames:
    """Frame positions, windowing and buffer lifetime."""

    def test_default_hop_is_half_frame(self, pool):
        samples = np.arange(10000, dtype=np.float64)
        frames = [(f.index, f.position) for f in iterate_frames(samples, 1024, pool=pool)]
        assert len(frames) == 18
        assert count_frames(10000, 1024) == 18
        assert frames[1] == (1, 512)
        assert frames[-1] == (17, 17 * 512)

    def test_max_frames_spreads_hop(self, pool):
        """Fewer frames than possible are spread across the whole signal."""
        samples = np.zeros(10000)
        positions = [f.position for f in iterate_frames(samples, 1024, max_frames=5, pool=pool)]
        assert positions == [0, 1795, 3590, 5385, 7180]

    def test_unwindowed_frames_copy_samples(self, pool):
        samples = np.arange(4096, dtype=np.float64)
        for f in iterate_frames(samples, 1024, hop_size=1024, apply_window=False, pool=pool):
            np.testing.assert_array_equal(f.frame, samples[f.position:f.position + 1024])

    def test_windowed_frame(self, pool):
        samples = np.ones(1024)
        gen = iterate_frames(samples, 1024, pool=pool)
        f = next(gen)
        np.testing.assert_allclose(f.frame, pool.hann(1024), atol=1e-7)
        gen.close()

    def test_frame_size_defaults_to_config(self, pool):
        assert count_frames(5000) == 3
        assert count_frames(5000, config=AnalysisConfig(frame_size=1024)) == 8
        frames = [(f.frame.shape[0], f.position) for f in iterate_frames(np.zeros(5000), pool=pool)]
        assert frames == [(2048, 0), (2048, 1024), (2048, 2048)]

    def test_short_signal_yields_nothing(self, pool):
        assert list(iterate_frames(np.zeros(100), 1024, pool=pool)) == []

    def test_buffer_is_reused_across_frames(self, pool):
        frames = [f.frame for f in iterate_frames(np.zeros(8192), 1024, pool=pool)]
        assert all(fr is frames[0] for fr in frames)

    def test_buffer_returned_after_exhaustion(self, pool):
        list(iterate_frames(np.zeros(8192), 1024, pool=pool))
        assert pool.buffers.stats().total_released == 1

    def test_buffer_returned_when_closed_early(self, pool):
        gen = iterate_frames(np.zeros(8192), 1024, pool=pool)
        next(gen)
        gen.close()
        assert pool.buffers.stats().total_released == 1

    def test_process_frames(self, pool):
        samples = np.ones(4096)
        out = process_frames(samples, lambda frame, i, pos: (i, pos), 1024, apply_window=False, pool=pool)
        assert out == [(0, 0), (1, 512), (2, 1024), (3, 1536), (4, 2048), (5, 2560), (6, 3072)]
