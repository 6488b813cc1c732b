"""
Test cases for the detection loop.
"""

import asyncio

import pytest

from hallpass.detection import DetectionLoop, LoopState, evaluate_faces
from hallpass.errors import ResourceError
from tests.fakes import FakeExtractor, FakeVideoSource, make_config, make_face, make_profile


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def profiles():
    return [
        make_profile('jane_doe.jpg', 'Jane Doe', 0.0, 0.0),
        make_profile('john_smith.jpg', 'John Smith', 1.0, 1.0)
    ]


class TestEvaluateFaces:

    def test_outcome_per_face(self, profiles):
        faces = [make_face(5.0, 5.0, x=0), make_face(1.0, 1.0, x=20)]
        outcomes, match = evaluate_faces(faces, profiles, 0.6)

        assert [o.matched for o in outcomes] == [False, True]
        assert outcomes[1].name == 'John Smith'
        assert outcomes[1].bounding_box.x == 20
        assert match.profile.display_name == 'John Smith'

    def test_first_face_in_detection_order_wins(self, profiles):
        faces = [make_face(1.0, 1.0), make_face(0.0, 0.0)]
        outcomes, match = evaluate_faces(faces, profiles, 0.6)

        assert all(o.matched for o in outcomes)
        assert match.profile.display_name == 'John Smith'

    def test_no_faces(self, profiles):
        assert evaluate_faces([], profiles, 0.6) == ([], None)


class TestDetectionLoop:
    """Test cases for DetectionLoop."""

    def test_match_fires_once_and_stops(self, config, profiles):
        extractor = FakeExtractor([], [], [make_face(0.0, 0.0)])
        source = FakeVideoSource()
        matches = []

        async def scenario():
            loop = DetectionLoop(extractor, config)
            loop.start(source, profiles, matches.append)
            return loop, await loop.wait()

        loop, state = asyncio.run(scenario())

        assert state is LoopState.MATCHED
        assert [m.profile.display_name for m in matches] == ['Jane Doe']
        assert extractor.calls == 3
        assert loop.cycles == 3
        assert source.stop_calls == 1

    def test_frame_results_reported(self, config, profiles):
        extractor = FakeExtractor([make_face(5.0, 5.0)], [make_face(0.0, 0.0)])
        results = []

        async def scenario():
            loop = DetectionLoop(extractor, config)
            loop.start(FakeVideoSource(), profiles, lambda match: None, results.append)
            await loop.wait()

        asyncio.run(scenario())

        assert len(results) == 2
        assert results[0].match is None
        assert results[0].faces[0].matched is False
        assert results[0].frame is not None
        assert results[1].match.profile.id == 'jane_doe.jpg'

    def test_failing_callback_does_not_stop_loop(self, config, profiles):
        extractor = FakeExtractor([], [make_face(0.0, 0.0)])
        matches = []

        def broken_renderer(result):
            raise RuntimeError('window closed')

        async def scenario():
            loop = DetectionLoop(extractor, config)
            loop.start(FakeVideoSource(), profiles, matches.append, broken_renderer)
            return await loop.wait()

        assert asyncio.run(scenario()) is LoopState.MATCHED
        assert len(matches) == 1

    def test_stop_discards_pending_match(self, config, profiles):
        extractor = FakeExtractor([make_face(0.0, 0.0)], delay=0.2)
        source = FakeVideoSource()
        matches = []

        async def scenario():
            loop = DetectionLoop(extractor, config)
            loop.start(source, profiles, matches.append)
            await asyncio.sleep(0.05)
            assert extractor.calls == 1
            loop.stop()
            state = await loop.wait()
            await asyncio.sleep(0.3)
            return state

        state = asyncio.run(scenario())

        assert state is LoopState.STOPPED
        assert matches == []
        assert source.stop_calls == 1

    def test_stop_is_idempotent(self, config, profiles):
        source = FakeVideoSource()

        async def scenario():
            loop = DetectionLoop(FakeExtractor([]), config)
            loop.start(source, profiles, lambda match: None)
            await asyncio.sleep(0.01)
            loop.stop()
            loop.stop()
            await loop.wait()
            loop.stop()
            return loop.state

        assert asyncio.run(scenario()) is LoopState.STOPPED
        assert source.stop_calls == 1

    def test_cannot_start_twice(self, config, profiles):
        async def scenario():
            loop = DetectionLoop(FakeExtractor([]), config)
            loop.start(FakeVideoSource(), profiles, lambda match: None)
            try:
                with pytest.raises(RuntimeError):
                    loop.start(FakeVideoSource(), profiles, lambda match: None)
            finally:
                loop.stop()
                await loop.wait()

        asyncio.run(scenario())

    def test_failing_cycles_never_match(self, config, profiles):
        extractor = FakeExtractor(RuntimeError('model crashed'))
        results = []

        async def scenario():
            loop = DetectionLoop(extractor, config)
            loop.start(FakeVideoSource(), profiles, results.append, results.append)
            await asyncio.sleep(0.05)
            state = loop.state
            loop.stop()
            await loop.wait()
            return state

        assert asyncio.run(scenario()) is LoopState.RUNNING
        assert results
        assert all(r.error is not None and r.match is None for r in results)
        assert extractor.calls > 1

    def test_slow_extractor_is_not_reissued(self, profiles):
        config = make_config(detection={'cycle_timeout': 0.01})
        extractor = FakeExtractor([make_face(5.0, 5.0)], delay=0.3)
        results = []

        async def scenario():
            loop = DetectionLoop(extractor, config)
            loop.start(FakeVideoSource(), profiles, lambda match: None, results.append)
            await asyncio.sleep(0.1)
            loop.stop()
            await loop.wait()

        asyncio.run(scenario())

        assert extractor.calls == 1
        assert results[0].error is not None
        assert len(results) > 1
        assert all(r.match is None for r in results)

    def test_read_failures_abort_loop(self, config, profiles):
        source = FakeVideoSource(frames=[])
        matches = []

        async def scenario():
            loop = DetectionLoop(FakeExtractor([make_face(0.0, 0.0)]), config)
            loop.start(source, profiles, matches.append)
            with pytest.raises(ResourceError):
                await loop.wait()
            return loop.state

        assert asyncio.run(scenario()) is LoopState.STOPPED
        assert source.reads == 3
        assert source.stop_calls == 1
        assert matches == []
