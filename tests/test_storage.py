import pytest
import sqlite3
from pathlib import Path

from custody.chain.service import CustodyService
from custody.core.errors import ConfigurationError, LedgerIntegrityError
from custody.core.types import Transfer
from custody.crypto.hashing import CHAINED_MODE, ENTRY_MODE
from custody.storage import SQLiteStorage, StorageBackend, create_storage


@pytest.fixture
def temp_db_path(tmp_path: Path) -> Path:
    return tmp_path / "test.db"


@pytest.fixture
def storage(temp_db_path: Path) -> SQLiteStorage:
    with SQLiteStorage(db_path=temp_db_path) as s:
        yield s


def populate(db_path: Path, mode: str = ENTRY_MODE) -> int:
    with CustodyService(storage=f"sqlite://{db_path}", mode=mode) as service:
        asset_id = service.create_asset("alice", "Widget-1", "blue widget", "sha256:abc")
        service.transfer_asset("alice", asset_id, "bob", "shipped")
        service.transfer_asset("bob", asset_id, "carol", "delivered")
    return asset_id


def test_create_storage_dynamic_routing(temp_db_path: Path):
    storage = create_storage(f"sqlite://{temp_db_path}")
    assert isinstance(storage, SQLiteStorage)
    assert isinstance(storage, StorageBackend)
    assert str(storage.db_path) == str(temp_db_path.resolve())
    storage.close()


def test_create_storage_memory_and_unknown():
    assert create_storage("memory:") is None
    assert create_storage("") is None
    mem = create_storage("sqlite://:memory:")
    assert mem.db_path is None
    mem.close()
    with pytest.raises(ValueError, match="Unsupported"):
        create_storage("ftp://ledger")


def test_sqlite_default_path_from_env(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("CUSTODY_DB_PATH", str(tmp_path / "env-test.db"))
    with SQLiteStorage() as env_storage:
        assert env_storage.db_path == (tmp_path / "env-test.db").resolve()


def test_sqlite_default_path_cwd(tmp_path: Path, monkeypatch):
    monkeypatch.delenv("CUSTODY_DB_PATH", raising=False)
    monkeypatch.chdir(tmp_path)
    with SQLiteStorage() as default_storage:
        assert default_storage.db_path.name == "custody.db"


def test_sqlite_schema_creation(storage: SQLiteStorage):
    def columns(table):
        return {row[1] for row in storage.conn.execute(f"PRAGMA table_info({table})")}

    assert columns("assets") == {
        "id", "name", "description", "metadata_hash", "current_owner",
        "creator", "created_at", "active", "transfer_count",
    }
    assert columns("transfers") == {
        "asset_id", "sequence", "from_owner", "to_owner", "timestamp", "notes", "fingerprint",
    }
    assert columns("owner_assets") == {"owner", "asset_id"}


def test_closed_storage_raises(temp_db_path: Path):
    storage = SQLiteStorage(temp_db_path)
    storage.close()
    with pytest.raises(RuntimeError, match="closed"):
        storage.load_assets()


def test_persist_and_reload(temp_db_path: Path):
    asset_id = populate(temp_db_path)

    with CustodyService(storage=str(temp_db_path)) as service:
        asset = service.get_asset(asset_id)
        assert asset.current_owner == "carol"
        assert asset.transfer_count == 2
        assert asset.metadata_hash == "sha256:abc"
        assert [t.notes for t in service.get_history(asset_id)] == ["", "shipped", "delivered"]
        assert service.get_owned_assets("carol") == {asset_id}
        assert service.get_owned_assets("alice") == frozenset()
        assert tuple(service.verify_asset(asset_id)) == (True, 2, "alice")

        # Ids continue after reload
        assert service.create_asset("dave", "Widget-2") == asset_id + 1


def test_deactivation_persists(temp_db_path: Path):
    asset_id = populate(temp_db_path)
    with CustodyService(storage=str(temp_db_path)) as service:
        service.deactivate_asset("carol", asset_id)

    with CustodyService(storage=str(temp_db_path), archived_reads=True) as service:
        assert service.get_asset(asset_id).active is False
        assert service.get_owned_assets("carol") == {asset_id}


def test_tamper_detection(temp_db_path: Path):
    asset_id = populate(temp_db_path)

    conn = sqlite3.connect(temp_db_path)
    conn.execute(
        "UPDATE transfers SET fingerprint = ? WHERE asset_id = ? AND sequence = 1",
        ("00" * 32, asset_id),
    )
    conn.commit()
    conn.close()

    with CustodyService(storage=str(temp_db_path)) as service:
        result = service.verify_asset(asset_id)
        assert tuple(result) == (False, 2, "alice")
        assert result.first_failure.index == 1


def test_tampered_fields_detected(temp_db_path: Path):
    asset_id = populate(temp_db_path)

    conn = sqlite3.connect(temp_db_path)
    conn.execute(
        "UPDATE transfers SET notes = 'rerouted' WHERE asset_id = ? AND sequence = 2",
        (asset_id,),
    )
    conn.commit()
    conn.close()

    with CustodyService(storage=str(temp_db_path)) as service:
        assert service.verify_asset(asset_id).is_valid is False


def test_deleted_transfer_row_isolated_to_its_asset(temp_db_path: Path):
    damaged = populate(temp_db_path)
    with CustodyService(storage=str(temp_db_path)) as service:
        intact = service.create_asset("dave", "Gadget-2")
        service.transfer_asset("dave", intact, "erin", "handoff")

    conn = sqlite3.connect(temp_db_path)
    conn.execute("DELETE FROM transfers WHERE asset_id = ? AND sequence = 1", (damaged,))
    conn.commit()
    conn.close()

    with CustodyService(storage=str(temp_db_path)) as service:
        result = service.verify_asset(damaged)
        assert tuple(result) == (False, 2, "alice")
        assert result.first_failure.category == "sequence"
        assert result.first_failure.index == 1
        assert [t.sequence for t in service.get_history(damaged)] == [0, 2]
        with pytest.raises(LedgerIntegrityError):
            service.transfer_asset("carol", damaged, "bob")

        assert service.get_owner(intact) == "erin"
        assert len(service.get_history(intact)) == 2
        assert tuple(service.verify_asset(intact)) == (True, 1, "dave")


def test_fingerprint_mode_is_bound_to_storage(temp_db_path: Path):
    populate(temp_db_path, mode=CHAINED_MODE)

    with pytest.raises(ConfigurationError, match="chained"):
        CustodyService(storage=str(temp_db_path), mode=ENTRY_MODE)

    with CustodyService(storage=str(temp_db_path), mode=CHAINED_MODE) as service:
        assert service.verify_asset(1).is_valid


def test_transfer_rolls_back_on_bad_owner_row(storage: SQLiteStorage):
    with CustodyService(storage=storage) as service:
        asset_id = service.create_asset("alice", "Widget-1")
        asset = service.registry.resolve(asset_id)

    # A fresh handle: the service closed the shared one
    with SQLiteStorage(storage.db_path) as s:
        with pytest.raises(sqlite3.IntegrityError):
            s.record_transfer(asset, Transfer(asset_id, 1, "mallory", "alice", "t", "", "ff"), "mallory")
        assert len(s.load_transfers(asset_id)) == 1
        assert s.load_owner_index() == [("alice", asset_id)]


class FlakyStorage(SQLiteStorage):
    def record_transfer(self, asset, transfer, previous_owner):
        raise sqlite3.OperationalError("disk I/O error")


def test_storage_failure_leaves_memory_untouched(temp_db_path: Path):
    with CustodyService(storage=FlakyStorage(temp_db_path)) as service:
        asset_id = service.create_asset("alice", "Widget-1")
        with pytest.raises(sqlite3.OperationalError):
            service.transfer_asset("alice", asset_id, "bob")

        assert service.get_owner(asset_id) == "alice"
        assert service.get_asset(asset_id).transfer_count == 0
        assert len(service.get_history(asset_id)) == 1
        assert service.get_owned_assets("bob") == frozenset()
