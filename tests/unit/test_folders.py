"""
Unit tests for the folder tree.
Tests cloudnest/storage/folders.py
"""
import threading

import pytest

from cloudnest.core.exceptions import (
    ConflictError,
    InvalidOperationError,
    NotFoundError,
    ValidationError,
)
from cloudnest.models.file import FileRecord
from cloudnest.models.folder import FolderRecord
from cloudnest.storage.folders import join_path, validate_folder_name


@pytest.fixture
def tree(db, storage_engine):
    return storage_engine.folders(db)


@pytest.fixture
def backend(register_backend):
    return register_backend("primary", is_default=True)


def _all_folders(db, owner_id="user-1"):
    return db.query(FolderRecord).filter(FolderRecord.owner_id == owner_id).all()


def _build(tree, owner_id="user-1"):
    """
    /Docs
    /Docs/2024
    /Docs/2024/Q1
    /Docs/2024/Q2
    /Docs/Drafts
    """
    docs = tree.create("Docs", owner_id)
    year = tree.create("2024", owner_id, parent_id=docs.id)
    q1 = tree.create("Q1", owner_id, parent_id=year.id)
    q2 = tree.create("Q2", owner_id, parent_id=year.id)
    drafts = tree.create("Drafts", owner_id, parent_id=docs.id)
    return docs, year, q1, q2, drafts


@pytest.mark.unit
class TestFolderNames:
    """Test folder name and path helpers."""

    def test_validate_folder_name(self):
        assert validate_folder_name("  Photos ") == "Photos"
        with pytest.raises(ValidationError):
            validate_folder_name("x" * 101)
        with pytest.raises(ValidationError):
            validate_folder_name("a/b")
        with pytest.raises(ValidationError):
            validate_folder_name("")

    def test_join_path(self):
        assert join_path(None, "Docs") == "/Docs"
        assert join_path("/Docs", "2024") == "/Docs/2024"


@pytest.mark.unit
class TestCreate:
    """Test folder creation."""

    def test_create_root_and_child(self, tree):
        docs = tree.create("Docs", "user-1")
        year = tree.create("2024", "user-1", parent_id=docs.id, color="#FF0000")

        assert docs.path == "/Docs"
        assert docs.depth == 1
        assert year.path == "/Docs/2024"
        assert year.depth == 2
        assert year.color == "#FF0000"

    def test_duplicate_sibling_conflicts(self, tree):
        docs = tree.create("Docs", "user-1")
        tree.create("2024", "user-1", parent_id=docs.id)

        with pytest.raises(ConflictError):
            tree.create("2024", "user-1", parent_id=docs.id)
        with pytest.raises(ConflictError):
            tree.create("Docs", "user-1")

    def test_same_name_allowed_for_other_owner_or_parent(self, tree):
        docs = tree.create("Docs", "user-1")
        tree.create("Docs", "user-2")
        tree.create("Docs", "user-1", parent_id=docs.id)

    def test_deleted_sibling_does_not_conflict(self, tree):
        docs = tree.create("Docs", "user-1")
        tree.soft_delete(docs.id, "user-1")

        again = tree.create("Docs", "user-1")

        assert again.id != docs.id

    def test_parent_must_be_live_and_owned(self, tree):
        docs = tree.create("Docs", "user-1")

        with pytest.raises(NotFoundError):
            tree.create("Mine", "user-2", parent_id=docs.id)

        tree.soft_delete(docs.id, "user-1")
        with pytest.raises(NotFoundError):
            tree.create("Child", "user-1", parent_id=docs.id)

    def test_max_depth(self, db, storage_engine):
        tree = storage_engine.folders(db)
        tree.max_depth = 3
        a = tree.create("a", "user-1")
        b = tree.create("b", "user-1", parent_id=a.id)
        c = tree.create("c", "user-1", parent_id=b.id)

        with pytest.raises(ValidationError):
            tree.create("d", "user-1", parent_id=c.id)

    def test_bad_color(self, tree):
        with pytest.raises(ValidationError):
            tree.create("Docs", "user-1", color="blue")


@pytest.mark.unit
class TestRenameAndMove:
    """Test materialized path recomputation."""

    def test_rename_rewrites_every_descendant(self, db, tree):
        docs, year, q1, q2, drafts = _build(tree)

        tree.rename(docs.id, "Archive")

        paths = {f.id: f.path for f in _all_folders(db)}
        assert paths == {
            docs.id: "/Archive",
            year.id: "/Archive/2024",
            q1.id: "/Archive/2024/Q1",
            q2.id: "/Archive/2024/Q2",
            drafts.id: "/Archive/Drafts",
        }

    def test_path_consistency_after_move(self, db, tree):
        docs, year, q1, q2, drafts = _build(tree)
        old_suffixes = {q1.id: "/Q1", q2.id: "/Q2"}

        moved = tree.move(year.id, drafts.id)

        assert moved.path == "/Docs/Drafts/2024"
        for folder_id, suffix in old_suffixes.items():
            folder = tree.get(folder_id)
            assert folder.path.startswith(moved.path)
            assert folder.path[len(moved.path):] == suffix

    def test_move_to_root(self, tree):
        docs, year, q1, _, _ = _build(tree)

        moved = tree.move(year.id, None)

        assert moved.parent_id is None
        assert moved.path == "/2024"
        assert tree.get(q1.id).path == "/2024/Q1"
        assert [f.name for f in tree.list_roots("user-1")] == ["2024", "Docs"]

    def test_rename_also_rewrites_deleted_descendants(self, tree):
        docs, year, q1, _, _ = _build(tree)
        tree.soft_delete(q1.id, "user-1")

        tree.rename(docs.id, "Archive")

        assert tree.get(q1.id, include_deleted=True).path == "/Archive/2024/Q1"

    def test_rename_conflict(self, tree):
        docs, year, _, _, drafts = _build(tree)

        with pytest.raises(ConflictError):
            tree.rename(drafts.id, "2024")

    def test_rename_to_same_name_is_noop(self, tree):
        docs = tree.create("Docs", "user-1")
        assert tree.rename(docs.id, "Docs").path == "/Docs"

    def test_move_into_itself_is_rejected(self, db, tree):
        docs, *_ = _build(tree)

        with pytest.raises(InvalidOperationError):
            tree.move(docs.id, docs.id)

    def test_cyclic_move_is_rejected_before_mutation(self, db, tree):
        docs, year, q1, q2, drafts = _build(tree)
        before = {f.id: (f.path, f.parent_id) for f in _all_folders(db)}

        with pytest.raises(InvalidOperationError):
            tree.move(docs.id, q1.id)

        db.expire_all()
        after = {f.id: (f.path, f.parent_id) for f in _all_folders(db)}
        assert after == before

    def test_move_conflict_at_destination(self, tree):
        docs = tree.create("Docs", "user-1")
        other = tree.create("Other", "user-1")
        tree.create("Shared", "user-1", parent_id=docs.id)
        shared = tree.create("Shared", "user-1", parent_id=other.id)

        with pytest.raises(ConflictError):
            tree.move(shared.id, docs.id)

    def test_move_that_breaks_depth_leaves_tree_unchanged(self, db, storage_engine):
        tree = storage_engine.folders(db)
        tree.max_depth = 3
        a = tree.create("a", "user-1")
        b = tree.create("b", "user-1", parent_id=a.id)
        x = tree.create("x", "user-1")
        y = tree.create("y", "user-1", parent_id=x.id)

        with pytest.raises(ValidationError):
            tree.move(x.id, b.id)

        db.expire_all()
        assert tree.get(x.id).path == "/x"
        assert tree.get(x.id).parent_id is None
        assert tree.get(y.id).path == "/x/y"


@pytest.mark.unit
class TestSoftDeleteCascade:
    """Test cascade completeness and idempotency."""

    def test_cascade_marks_subtree_and_files(self, db, tree, backend, make_file):
        docs, year, q1, q2, drafts = _build(tree)
        outside = tree.create("Outside", "user-1")
        f1 = make_file(backend_id=backend.id, name="a.pdf", folder_id=docs.id)
        f2 = make_file(backend_id=backend.id, name="b.pdf", folder_id=q2.id)
        f3 = make_file(backend_id=backend.id, name="c.pdf", folder_id=outside.id)

        cascade = tree.soft_delete(docs.id, "user-1")

        assert set(cascade.folder_ids) == {docs.id, year.id, q1.id, q2.id, drafts.id}
        assert set(cascade.file_ids) == {f1.id, f2.id}

        live_under = (
            db.query(FolderRecord)
            .filter(FolderRecord.path.like("/Docs%"), FolderRecord.is_deleted.is_(False))
            .count()
        )
        assert live_under == 0
        files = {f.id: f for f in db.query(FileRecord).all()}
        assert files[f1.id].is_deleted and files[f2.id].is_deleted
        assert not files[f3.id].is_deleted
        assert tree.get(outside.id).is_deleted is False

    def test_cascade_uses_same_actor_and_timestamp(self, db, tree, backend, make_file):
        docs, year, q1, q2, drafts = _build(tree)
        make_file(backend_id=backend.id, folder_id=q1.id)

        tree.soft_delete(docs.id, "admin-7")

        folders = [f for f in _all_folders(db)]
        stamps = {(f.deleted_by, f.deleted_at) for f in folders}
        stamps |= {(f.deleted_by, f.deleted_at) for f in db.query(FileRecord).all()}
        assert len(stamps) == 1
        assert stamps.pop()[0] == "admin-7"

    def test_previously_deleted_descendant_keeps_its_stamp(self, db, tree):
        docs, year, q1, _, _ = _build(tree)
        tree.soft_delete(q1.id, "user-1")
        first_stamp = tree.get(q1.id, include_deleted=True).deleted_at

        cascade = tree.soft_delete(docs.id, "user-2")

        assert q1.id not in cascade.folder_ids
        q1_after = tree.get(q1.id, include_deleted=True)
        assert q1_after.deleted_at == first_stamp
        assert q1_after.deleted_by == "user-1"

    def test_soft_delete_is_idempotent(self, tree):
        docs = tree.create("Docs", "user-1")
        tree.soft_delete(docs.id, "user-1")

        again = tree.soft_delete(docs.id, "user-1")

        assert again.folder_ids == []
        assert again.file_ids == []

    def test_descendants_and_children(self, tree):
        docs, year, q1, q2, drafts = _build(tree)
        tree.soft_delete(q2.id, "user-1")

        assert [f.name for f in tree.children(docs.id)] == ["2024", "Drafts"]
        assert {f.id for f in tree.descendants(docs.id)} == {year.id, q1.id, drafts.id}
        assert {f.id for f in tree.descendants(docs.id, include_deleted=True)} == {
            year.id, q1.id, q2.id, drafts.id,
        }
        assert [f.id for f in tree.list_deleted("user-1")] == [q2.id]


@pytest.mark.unit
class TestRestore:
    """Test restore policy."""

    def test_restore_only_the_folder(self, tree, backend, make_file):
        docs, year, q1, _, _ = _build(tree)
        record = make_file(backend_id=backend.id, folder_id=year.id)
        tree.soft_delete(docs.id, "user-1")

        restored = tree.restore(docs.id)

        assert restored.is_deleted is False
        assert tree.get(year.id, include_deleted=True).is_deleted is True
        assert tree.catalog.get(record.id, include_deleted=True).is_deleted is True

    def test_restore_live_folder_is_noop(self, tree):
        docs = tree.create("Docs", "user-1")
        assert tree.restore(docs.id).is_deleted is False

    def test_restore_conflicts_with_new_sibling(self, tree):
        docs = tree.create("Docs", "user-1")
        tree.soft_delete(docs.id, "user-1")
        tree.create("Docs", "user-1")

        with pytest.raises(ConflictError):
            tree.restore(docs.id)

    def test_get_by_path(self, tree):
        docs, year, *_ = _build(tree)

        assert tree.get_by_path("user-1", "/Docs/2024").id == year.id
        with pytest.raises(NotFoundError):
            tree.get_by_path("user-2", "/Docs/2024")


@pytest.mark.unit
class TestConcurrentRename:
    """Subtree reads on other sessions while a rename rewrites paths."""

    def test_readers_never_see_a_half_renamed_subtree(self, storage_engine, threaded_sessions):
        setup = threaded_sessions()
        tree = storage_engine.folders(setup)
        root = tree.create("A", "user-1")
        year = tree.create("2024", "user-1", parent_id=root.id)
        tree.create("Q1", "user-1", parent_id=year.id)
        tree.create("Q2", "user-1", parent_id=year.id)
        tree.create("Drafts", "user-1", parent_id=root.id)
        root_id = root.id
        setup.close()

        stop = threading.Event()
        observed = []
        errors = []

        def renamer():
            db = threaded_sessions()
            try:
                for i in range(20):
                    storage_engine.folders(db).rename(root_id, "B" if i % 2 == 0 else "A")
            except Exception as e:
                errors.append(e)
            finally:
                db.close()

        def reader():
            while not stop.is_set():
                db = threaded_sessions()
                try:
                    paths = [
                        path for (path,) in db.query(FolderRecord.path)
                        .filter(FolderRecord.owner_id == "user-1")
                    ]
                    observed.append({path.split("/")[1] for path in paths})
                except Exception as e:
                    errors.append(e)
                finally:
                    db.close()

        readers = [threading.Thread(target=reader) for _ in range(3)]
        writer = threading.Thread(target=renamer)
        for thread in readers + [writer]:
            thread.start()
        writer.join(timeout=60)
        stop.set()
        for thread in readers:
            thread.join(timeout=10)

        assert errors == []
        assert observed
        assert all(len(roots) == 1 for roots in observed)

        check = threaded_sessions()
        try:
            assert storage_engine.folders(check).get_by_path("user-1", "/A/2024/Q2").name == "Q2"
        finally:
            check.close()
