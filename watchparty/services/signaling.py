"""
watchparty.services.signaling
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

语音信令中继 —— 无状态地转发 WebRTC offer / answer / ICE candidate，
并维护语音子频道的在场与麦克风状态广播。不做任何持久化。

点对点消息按连接 ID（``to``）寻址，转发时附上发送方连接 ID（``from``），
对端据此回复 answer 与 candidate。
"""
from __future__ import annotations

from typing import Any

from watchparty.core.errors import NotFoundError
from watchparty.core.logging import get_logger
from watchparty.schemas.events import (
    MemberPayload,
    StreamEvent,
    VoiceAnswerPayload,
    VoiceCandidatePayload,
    VoiceOfferPayload,
    VoicePeersEvent,
    VoicePresenceEvent,
)
from watchparty.services.broadcaster import (
    ChannelBroadcaster,
    is_voice_channel,
    room_channel,
    room_of_voice_channel,
    voice_channel,
)
from watchparty.services.connection import Connection
from watchparty.services.connection_registry import ConnectionRegistry

logger = get_logger(__name__)


class SignalingRelay:
    """WebRTC 信令与语音在场中继。"""

    def __init__(self, registry: ConnectionRegistry, broadcaster: ChannelBroadcaster) -> None:
        self.registry = registry
        self.broadcaster = broadcaster

    # ── 点对点信令 ────────────────────────────────────────────────────

    async def _relay(self, conn: Connection, event: str, to: str, body: dict[str, Any]) -> None:
        delivered = await self.broadcaster.send_to(to, event, {"from": conn.id, **body})
        if not delivered:
            raise NotFoundError("Peer is not connected.")
        logger.debug("📡 信令转发 | event=%s | to=%s", event, to)

    async def voice_offer(self, conn: Connection, payload: VoiceOfferPayload) -> None:
        await self._relay(conn, "voice-offer", payload.to, {"offer": payload.offer})

    async def voice_answer(self, conn: Connection, payload: VoiceAnswerPayload) -> None:
        await self._relay(conn, "voice-answer", payload.to, {"answer": payload.answer})

    async def voice_candidate(self, conn: Connection, payload: VoiceCandidatePayload) -> None:
        await self._relay(conn, "voice-candidate", payload.to, {"candidate": payload.candidate})

    # ── 语音频道 ──────────────────────────────────────────────────────

    async def join_voice(self, conn: Connection, payload: MemberPayload) -> None:
        """加入语音子频道，通知已在频道内的人，并把现有成员列表发给新成员。"""
        channel = voice_channel(payload.room_id)
        peers = [
            VoicePresenceEvent(user_id=self.registry.resolve(peer.id), socket_id=peer.id)
            for peer in self.broadcaster.members(channel)
            if peer is not conn
        ]
        self.broadcaster.join(channel, conn)

        await conn.emit("voice-peers", VoicePeersEvent(peers=peers))
        await self.broadcaster.broadcast(
            channel, "user-joined-voice",
            VoicePresenceEvent(user_id=payload.user_id, socket_id=conn.id),
            exclude=conn,
        )
        logger.info("🎙️ 加入语音 | room=%s | user=%s | 在线: %d",
                    payload.room_id, payload.user_id, self.broadcaster.online_count(channel))

    async def leave_voice(self, conn: Connection, payload: MemberPayload) -> None:
        channel = voice_channel(payload.room_id)
        self.broadcaster.leave(channel, conn)
        await self.broadcaster.broadcast(
            channel, "user-left-voice",
            VoicePresenceEvent(user_id=payload.user_id, socket_id=conn.id),
        )
        logger.info("🔇 离开语音 | room=%s | user=%s", payload.room_id, payload.user_id)

    async def mic_enabled(self, conn: Connection, payload: MemberPayload) -> None:
        await self._mic_state(conn, payload, "mic-enabled")

    async def mic_disabled(self, conn: Connection, payload: MemberPayload) -> None:
        await self._mic_state(conn, payload, "mic-disabled")

    async def _mic_state(self, conn: Connection, payload: MemberPayload, event: str) -> None:
        await self.broadcaster.broadcast(
            voice_channel(payload.room_id), event,
            VoicePresenceEvent(user_id=payload.user_id, socket_id=conn.id),
            exclude=conn,
        )

    # ── 屏幕共享通知 ──────────────────────────────────────────────────

    async def start_stream(self, conn: Connection, payload: MemberPayload) -> None:
        await self.broadcaster.broadcast(
            room_channel(payload.room_id), "stream-started",
            StreamEvent(user_id=payload.user_id), exclude=conn,
        )
        logger.info("📺 开始共享 | room=%s | user=%s", payload.room_id, payload.user_id)

    async def stop_stream(self, conn: Connection, payload: MemberPayload) -> None:
        await self.broadcaster.broadcast(
            room_channel(payload.room_id), "stream-stopped",
            StreamEvent(user_id=payload.user_id), exclude=conn,
        )
        logger.info("📺 停止共享 | room=%s | user=%s", payload.room_id, payload.user_id)

    # ── 断线 ──────────────────────────────────────────────────────────

    async def disconnect(self, conn: Connection) -> None:
        """连接断开时退出其所在的语音频道，并通知频道内其他人。"""
        user_id = self.registry.resolve(conn.id)
        voice_channels = [
            name for name, members in self.broadcaster.channels.items()
            if conn in members and is_voice_channel(name)
        ]
        for channel in voice_channels:
            self.broadcaster.leave(channel, conn)
            await self.broadcaster.broadcast(
                channel, "user-left-voice",
                VoicePresenceEvent(user_id=user_id, socket_id=conn.id),
            )
            logger.info("🔇 断线离开语音 | room=%s", room_of_voice_channel(channel))
