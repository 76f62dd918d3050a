"""
tests.test_repositories
~~~~~~~~~~~~~~~~~~~~~~~

MongoDB 仓库单元测试 —— mock 掉 motor 集合，只校验发出的查询与更新语句。
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import ServerSelectionTimeoutError

from watchparty.core.errors import PersistenceError, ValidationError
from watchparty.db.message_repository import MessageRepository
from watchparty.db.room_repository import RoomRepository
from watchparty.db.user_repository import UserRepository
from watchparty.schemas.room import Participant


def _mock_db() -> tuple[MagicMock, MagicMock]:
    collection = MagicMock()
    collection.create_index = AsyncMock()
    collection.find_one = AsyncMock(return_value=None)
    collection.find_one_and_update = AsyncMock(return_value=None)
    collection.insert_one = AsyncMock()
    collection.delete_one = AsyncMock()
    collection.delete_many = AsyncMock()
    db = MagicMock()
    db.__getitem__.return_value = collection
    return db, collection


def _room_doc(oid: ObjectId, admin: str, members: list[str]) -> dict[str, Any]:
    return {
        "_id": oid,
        "name": "Room-1",
        "admin": admin,
        "adminName": "alice",
        "users": [{"id": m, "username": m} for m in members],
        "videoUrl": "",
        "serviceId": "1",
        "isPlaying": False,
        "playbackTime": 0,
    }


ALICE = str(ObjectId())
BOB = str(ObjectId())


class TestRoomRepository:
    """测试 RoomRepository 的原子更新语句。"""

    @pytest.mark.asyncio
    async def test_indexes_created_once(self) -> None:
        db, collection = _mock_db()
        repo = RoomRepository(db)

        await repo.get_room(str(ObjectId()))
        await repo.get_room(str(ObjectId()))

        assert collection.create_index.await_count == 2  # uniq_admin + idx_member
        names = {c.kwargs["name"] for c in collection.create_index.call_args_list}
        assert names == {"uniq_admin", "idx_member"}

    @pytest.mark.asyncio
    async def test_insert_room_document_shape(self) -> None:
        db, collection = _mock_db()
        collection.insert_one.return_value = MagicMock(inserted_id=ObjectId())
        repo = RoomRepository(db)
        admin = Participant(id=ALICE, username="alice")

        room = await repo.insert_room(admin=admin, admin_name="Alice", service_id="1")

        doc = collection.insert_one.call_args.args[0]
        assert doc["admin"] == ALICE
        assert doc["adminName"] == "Alice"
        assert doc["users"] == [admin.to_payload()]
        assert doc["videoUrl"] == ""
        assert doc["isPlaying"] is False
        assert doc["name"].startswith("Room-")
        assert room.member_ids == [ALICE]

    @pytest.mark.asyncio
    async def test_add_member_is_conditional_push(self) -> None:
        db, collection = _mock_db()
        oid = ObjectId()
        collection.find_one_and_update.return_value = _room_doc(oid, ALICE, [ALICE, BOB])
        repo = RoomRepository(db)

        room = await repo.add_member(str(oid), Participant(id=BOB, username="bob"))

        filter_, update = collection.find_one_and_update.call_args.args
        assert filter_ == {"_id": oid, "users.id": {"$ne": BOB}}
        assert update["$push"]["users"]["id"] == BOB
        assert collection.find_one_and_update.call_args.kwargs["return_document"] is ReturnDocument.AFTER
        assert room is not None and room.member_ids == [ALICE, BOB]

    @pytest.mark.asyncio
    async def test_add_existing_member_returns_current_room(self) -> None:
        db, collection = _mock_db()
        oid = ObjectId()
        collection.find_one.return_value = _room_doc(oid, ALICE, [ALICE, BOB])
        repo = RoomRepository(db)

        room = await repo.add_member(str(oid), Participant(id=BOB, username="bob"))

        assert room is not None and room.member_ids == [ALICE, BOB]

    @pytest.mark.asyncio
    async def test_add_member_to_missing_room(self) -> None:
        db, _ = _mock_db()
        repo = RoomRepository(db)

        assert await repo.add_member(str(ObjectId()), Participant(id=BOB, username="bob")) is None

    @pytest.mark.asyncio
    async def test_remove_member_pulls_by_id(self) -> None:
        db, collection = _mock_db()
        oid = ObjectId()
        collection.find_one_and_update.return_value = _room_doc(oid, ALICE, [ALICE])
        repo = RoomRepository(db)

        room = await repo.remove_member(str(oid), BOB)

        _, update = collection.find_one_and_update.call_args.args
        assert update["$pull"] == {"users": {"id": BOB}}
        assert room is not None and room.member_ids == [ALICE]

    @pytest.mark.asyncio
    async def test_update_playback_guards_on_admin(self) -> None:
        db, collection = _mock_db()
        oid = ObjectId()
        repo = RoomRepository(db)

        result = await repo.update_playback(str(oid), BOB, {"isPlaying": True})

        filter_, update = collection.find_one_and_update.call_args.args
        assert filter_ == {"_id": oid, "admin": BOB}
        assert update["$set"] == {"isPlaying": True}
        assert result is None

    @pytest.mark.asyncio
    async def test_find_rooms_by_member_uses_member_index(self) -> None:
        db, collection = _mock_db()
        cursor = MagicMock()
        cursor.to_list = AsyncMock(return_value=[_room_doc(ObjectId(), ALICE, [ALICE, BOB])])
        collection.find.return_value = cursor
        repo = RoomRepository(db)

        rooms = await repo.find_rooms_by_member(BOB)

        collection.find.assert_called_once_with({"users.id": BOB})
        assert [r.admin for r in rooms] == [ALICE]

    @pytest.mark.asyncio
    async def test_delete_room(self) -> None:
        db, collection = _mock_db()
        collection.delete_one.return_value = MagicMock(deleted_count=1)
        repo = RoomRepository(db)

        assert await repo.delete_room(str(ObjectId())) is True

    @pytest.mark.asyncio
    async def test_malformed_id_never_reaches_database(self) -> None:
        db, collection = _mock_db()
        repo = RoomRepository(db)

        with pytest.raises(ValidationError):
            await repo.get_room("xyz")
        collection.find_one.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_driver_error_becomes_persistence_error(self) -> None:
        db, collection = _mock_db()
        collection.find_one.side_effect = ServerSelectionTimeoutError("no servers")
        repo = RoomRepository(db)

        with pytest.raises(PersistenceError):
            await repo.get_room(str(ObjectId()))


class TestUserRepository:

    @pytest.mark.asyncio
    async def test_get_user_snapshot(self) -> None:
        db, collection = _mock_db()
        oid = ObjectId()
        collection.find_one.return_value = {"_id": oid, "username": "bob", "profilePic": "p.png"}
        repo = UserRepository(db)

        user = await repo.get_user(str(oid))

        assert user == Participant(id=str(oid), username="bob", profile_pic="p.png")

    @pytest.mark.asyncio
    async def test_missing_username_falls_back(self) -> None:
        db, collection = _mock_db()
        oid = ObjectId()
        collection.find_one.return_value = {"_id": oid}
        repo = UserRepository(db)

        user = await repo.get_user(str(oid))

        assert user is not None and user.username == "Unknown User"

    @pytest.mark.asyncio
    async def test_unknown_user(self) -> None:
        db, _ = _mock_db()
        assert await UserRepository(db).get_user(str(ObjectId())) is None


class TestMessageRepository:

    @pytest.mark.asyncio
    async def test_insert_message_embeds_sender(self) -> None:
        db, collection = _mock_db()
        mid = ObjectId()
        collection.insert_one.return_value = MagicMock(inserted_id=mid)
        repo = MessageRepository(db)
        room_id = str(ObjectId())
        sender = Participant(id=ALICE, username="alice")

        message = await repo.insert_message(room_id, sender, "hello")

        doc = collection.insert_one.call_args.args[0]
        assert doc["room"] == ObjectId(room_id)
        assert doc["senderId"] == ALICE
        assert doc["sender"] == sender.to_payload()
        assert isinstance(doc["timestamp"], datetime)
        assert doc["timestamp"].tzinfo == timezone.utc
        assert message.id == str(mid)
        assert message.room == room_id

    @pytest.mark.asyncio
    async def test_delete_for_room(self) -> None:
        db, collection = _mock_db()
        collection.delete_many.return_value = MagicMock(deleted_count=3)
        room_id = str(ObjectId())

        assert await MessageRepository(db).delete_for_room(room_id) == 3
        collection.delete_many.assert_awaited_once_with({"room": ObjectId(room_id)})
