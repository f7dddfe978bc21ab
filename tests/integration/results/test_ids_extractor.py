"""Tests for resolving selector mappings into component result IDs."""

import pytest

from study_results.db import session_scope
from study_results.db.repository import ResultRepository
from study_results.exceptions import BadRequestError
from study_results.ids import ComponentResultIdsExtractor


@pytest.fixture
def extractor(session_factory):
    with session_scope(session_factory) as session:
        yield ComponentResultIdsExtractor(ResultRepository(session))


class TestComponentResultIdsExtractor:
    def test_by_study(self, world, extractor):
        assert extractor.extract({"studyIds": str(world["study"])}) == sorted(
            [world["a1"], world["a2"], world["b1"], world["c1"]]
        )

    def test_by_component(self, world, extractor):
        assert extractor.extract({"componentIds": [world["component2"]]}) == [world["a2"]]

    def test_by_study_result_range(self, world, extractor):
        selector = {"studyResultIds": f"{world['a']}-{world['b']}"}
        assert extractor.extract(selector) == sorted([world["a1"], world["a2"], world["b1"]])

    def test_by_batch(self, world, extractor):
        assert len(extractor.extract({"batchIds": world["batch"]})) == 4

    def test_by_group(self, seed, world, session_factory):
        active = seed.group(world["batch"])
        history = seed.group(world["batch"])
        in_active = seed.study_result(world["study"], world["batch"], world["worker"], active_group_result_id=active)
        in_history = seed.study_result(world["study"], world["batch"], world["worker"], history_group_result_id=history)
        cr_active = seed.component_result(in_active, world["component1"], "x")
        cr_history = seed.component_result(in_history, world["component1"], "y")

        with session_scope(session_factory) as session:
            extractor = ComponentResultIdsExtractor(ResultRepository(session))
            assert extractor.extract({"groupIds": f"{active},{history}"}) == [cr_active, cr_history]

    def test_unknown_ids_are_dropped_and_result_deduplicated(self, world, extractor):
        selector = {"componentResultIds": f"{world['a1']},{world['a1']},9999", "studyResultIds": str(world["a"])}
        assert extractor.extract(selector) == sorted([world["a1"], world["a2"]])

    def test_extract_all_merges_selectors(self, world, extractor):
        ids = extractor.extract_all({"componentResultIds": [world["c1"]]}, {"componentIds": str(world["component2"])})
        assert ids == sorted([world["a2"], world["c1"]])

    def test_unknown_field(self, extractor):
        with pytest.raises(BadRequestError, match="Unknown field"):
            extractor.extract({"workerIds": "1"})

    @pytest.mark.parametrize("value", ["1-x", True, 1.5, {"id": 1}])
    def test_malformed_value(self, extractor, value):
        with pytest.raises(BadRequestError):
            extractor.extract({"componentResultIds": value})
