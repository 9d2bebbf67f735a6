"""Tests for result reconciliation."""
import pytest

from gallery_ingest.errors import ReconciliationMiss
from gallery_ingest.models import PhotoAssignment, UploadedObject
from gallery_ingest.orchestrator.reconciler import (
    DEFAULT_STAGES,
    MatchStage,
    ResultReconciler,
    basename,
    match_basename,
    match_exact,
    match_normalized,
    match_suffix,
    normalize,
    summarize_stages,
)

from conftest import handle


def _obj(stored_name: str) -> UploadedObject:
    return UploadedObject(
        stored_name=stored_name,
        url=f"https://cdn.test/{stored_name}",
        size_bytes=10,
        mime_type="image/jpeg",
    )


def _assign(name: str, chapter_id="c1", position=0, relative_path="") -> PhotoAssignment:
    return PhotoAssignment(handle(name, relative_path), chapter_id, position)


class TestMatchers:
    def test_basename_and_normalize(self):
        assert basename("Sposo/sub/IMG 1.jpg") == "IMG 1.jpg"
        assert basename("C:\\photos\\IMG.jpg") == "IMG.jpg"
        assert normalize("Sposo/IMG 1 .JPG") == "img1.jpg"
        assert normalize("Foto #1.jpg") == "foto_1.jpg"

    def test_exact(self):
        assert match_exact("a.jpg", "a.jpg")
        assert not match_exact("a.jpg", "A.jpg")

    def test_basename(self):
        assert match_basename("galleries/g/a.jpg", "Sposo/a.jpg")
        assert not match_basename("a.jpg", "b.jpg")

    def test_normalized(self):
        assert match_normalized("img 1.JPG", "IMG1.jpg")
        assert match_normalized("Foto _1.jpg", "Foto #1.jpg")

    def test_suffix_either_direction(self):
        assert match_suffix("1712345678-IMG_1.jpg", "IMG_1.jpg")
        assert match_suffix("IMG_1.jpg", "wedding-IMG_1.jpg")
        assert not match_suffix("IMG_1.jpg", "IMG_2.jpg")
        assert not match_suffix("", "IMG_2.jpg")

    def test_stage_order(self):
        assert [s.name for s in DEFAULT_STAGES] == ["exact", "basename", "normalized", "suffix"]


class TestResultReconciler:
    def test_exact_match_carries_chapter_metadata(self):
        assignments = [_assign("a.jpg", "c1", 0, "Sposo/a.jpg"), _assign("b.jpg", "c2", 4, "Sposa/b.jpg")]

        result = ResultReconciler().reconcile(assignments, [_obj("b.jpg"), _obj("a.jpg")])

        assert [p.name for p in result.photos] == ["b.jpg", "a.jpg"]
        b, a = result.photos
        assert (b.chapter_id, b.chapter_position, b.folder_path) == ("c2", 4, "Sposa")
        assert (a.chapter_id, a.chapter_position, a.folder_path) == ("c1", 0, "Sposo")
        assert b.url == "https://cdn.test/b.jpg"
        assert result.matched_by["exact"] == 2
        assert result.miss_count == 0

    def test_sanitized_name_matches_normalized_stage(self):
        assignments = [_assign("Foto #1.jpg", "c1")]

        result = ResultReconciler().reconcile(assignments, [_obj("Foto _1.jpg")])

        assert result.photos[0].chapter_id == "c1"
        assert result.matched_by["normalized"] == 1

    def test_path_prefix_matches_basename_stage(self):
        result = ResultReconciler().reconcile([_assign("a.jpg", "c3")], [_obj("export/a.jpg")])
        assert result.photos[0].chapter_id == "c3"
        assert result.matched_by["basename"] == 1

    def test_suffix_match_is_not_masked(self):
        assignments = [_assign("IMG_0001.jpg", "c1"), _assign("Sposa-IMG_0002.jpg", "c2")]

        result = ResultReconciler().reconcile(assignments, [_obj("1712345678123-42-IMG_0001.jpg"), _obj("IMG_0002.jpg")])

        assert [p.chapter_id for p in result.photos] == ["c1", "c2"]
        assert result.matched_by["suffix"] == 2
        assert result.miss_count == 0

    def test_suffix_prefers_longest_candidate(self):
        assignments = [_assign("1.jpg", "short"), _assign("IMG_1.jpg", "long")]
        result = ResultReconciler().reconcile(assignments, [_obj("x-IMG_1.jpg")])
        assert result.photos[0].chapter_id == "long"

    def test_miss_keeps_object_without_chapter(self):
        result = ResultReconciler().reconcile([_assign("a.jpg", "c1")], [_obj("zzz.png")])

        photo = result.photos[0]
        assert photo.chapter_id is None
        assert photo.url == "https://cdn.test/zzz.png"
        assert result.miss_count == 1
        assert isinstance(result.misses[0], ReconciliationMiss)
        assert result.misses[0].stored_name == "zzz.png"
        assert result.matched_by["miss"] == 1

    def test_duplicate_names_are_consumed_in_order(self):
        assignments = [
            _assign("IMG_1.jpg", "c1", 0, "Sposo/IMG_1.jpg"),
            _assign("IMG_1.jpg", "c2", 0, "Sposa/IMG_1.jpg"),
        ]

        result = ResultReconciler().reconcile(assignments, [_obj("IMG_1.jpg"), _obj("IMG_1.jpg"), _obj("IMG_1.jpg")])

        # An assignment is never linked twice
        assert [p.chapter_id for p in result.photos] == ["c1", "c2", None]
        assert result.miss_count == 1
        assert result.matched_by["exact"] == 2

    def test_used_exact_match_falls_through_to_later_stage(self):
        assignments = [_assign("IMG_1.jpg", "c1"), _assign("wedding-IMG_1.jpg", "c2")]

        result = ResultReconciler().reconcile(assignments, [_obj("IMG_1.jpg"), _obj("IMG_1.jpg")])

        assert [p.chapter_id for p in result.photos] == ["c1", "c2"]
        assert result.matched_by["suffix"] == 1

    def test_empty_inputs(self):
        result = ResultReconciler().reconcile([], [])
        assert result.photos == []
        assert result.miss_count == 0

    def test_custom_stages(self):
        reconciler = ResultReconciler(stages=[MatchStage("exact", match_exact)])
        result = reconciler.reconcile([_assign("a.jpg")], [_obj("A.jpg")])
        assert result.miss_count == 1

    def test_find(self):
        assignments = [_assign("a.jpg"), _assign("b.jpg")]
        assert ResultReconciler().find("b.jpg", assignments) == ("exact", 1)
        assert ResultReconciler().find("nothing.gif", assignments) is None

    def test_summarize_stages(self):
        assert summarize_stages({"exact": 3, "basename": 0, "miss": 1}) == ["exact: 3", "miss: 1"]


def _uploaded_from(index: int, stored_name: str) -> UploadedObject:
    return UploadedObject(
        stored_name=stored_name,
        url=f"https://cdn.test/{index}-{stored_name}",
        size_bytes=10,
        mime_type="image/jpeg",
        source_index=index,
    )


class TestSourceLinking:
    @pytest.fixture
    def same_name_in_two_folders(self):
        sposo = handle("IMG_0001.jpg", "Sposo/IMG_0001.jpg")
        sposa = handle("IMG_0001.jpg", "Sposa/IMG_0001.jpg")
        assignments = [PhotoAssignment(sposo, "sposo", 0), PhotoAssignment(sposa, "sposa", 0)]
        return [sposo, sposa], assignments

    def test_surviving_duplicate_keeps_its_own_chapter(self, same_name_in_two_folders):
        sources, assignments = same_name_in_two_folders

        # The Sposo copy failed; only the Sposa copy was uploaded
        result = ResultReconciler().reconcile(assignments, [_uploaded_from(1, "IMG_0001.jpg")], sources)

        photo = result.photos[0]
        assert (photo.chapter_id, photo.folder_path) == ("sposa", "Sposa")
        assert result.matched_by["source"] == 1
        assert result.miss_count == 0

    def test_completion_order_does_not_matter(self, same_name_in_two_folders):
        sources, assignments = same_name_in_two_folders
        uploaded = [_uploaded_from(1, "IMG_0001.jpg"), _uploaded_from(0, "IMG_0001.jpg")]

        result = ResultReconciler().reconcile(assignments, uploaded, sources)

        assert [p.chapter_id for p in result.photos] == ["sposa", "sposo"]
        assert [p.folder_path for p in result.photos] == ["Sposa", "Sposo"]

    def test_source_without_assignment_falls_back_to_names(self):
        stray = handle("a.jpg", "Other/a.jpg")
        assignments = [_assign("a.jpg", "c1", 0, "Sposo/a.jpg")]

        result = ResultReconciler().reconcile(assignments, [_uploaded_from(0, "a.jpg")], [stray])

        assert result.photos[0].chapter_id == "c1"
        assert result.matched_by["exact"] == 1

    def test_used_source_is_a_miss_not_a_name_match(self, same_name_in_two_folders):
        sources, assignments = same_name_in_two_folders
        uploaded = [_uploaded_from(1, "IMG_0001.jpg"), _uploaded_from(1, "IMG_0001.jpg")]

        result = ResultReconciler().reconcile(assignments, uploaded, sources)

        assert [p.chapter_id for p in result.photos] == ["sposa", None]
        assert result.miss_count == 1

    def test_out_of_range_index_uses_names(self):
        result = ResultReconciler().reconcile([_assign("a.jpg", "c1")], [_uploaded_from(7, "a.jpg")], [])
        assert result.photos[0].chapter_id == "c1"


class TestLookupTables:
    def test_large_batch_matches_every_object(self):
        assignments = [_assign(f"IMG_{i:04d}.jpg", f"c{i % 3}", i) for i in range(2000)]
        uploaded = [_obj(f"IMG_{i:04d}.jpg") for i in reversed(range(2000))]

        result = ResultReconciler().reconcile(assignments, uploaded)

        assert result.matched_by["exact"] == 2000
        assert result.photos[0].chapter_position == 1999

    def test_keyed_stages_match_their_predicates(self):
        for stage in DEFAULT_STAGES:
            if stage.key is None:
                continue
            for a, b in [("IMG 1.JPG", "img1.jpg"), ("x/a.jpg", "a.jpg"), ("a.jpg", "a.jpg"), ("a.jpg", "b.jpg")]:
                assert stage.matches(a, b) == (stage.key(a) == stage.key(b))
