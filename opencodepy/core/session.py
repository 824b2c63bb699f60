"""Convenience handle bound to one session."""

from typing import TYPE_CHECKING, List, Optional

from opencodepy.core.streaming import StreamOptions
from opencodepy.core.types import MessageWithParts, SessionInfo

if TYPE_CHECKING:
    from opencodepy.core.client import Client


class Session:
    """
    A session on the server, as returned by ``Client.create_session`` or
    ``Client.get_session``. Every call goes through the owning client.
    """

    def __init__(self, client: "Client", info: SessionInfo):
        self._client = client
        self.info = info

    @property
    def id(self) -> str:
        return self.info.id

    @property
    def title(self) -> str:
        return self.info.title

    def send(
        self,
        prompt: str,
        provider_id: Optional[str] = None,
        model_id: Optional[str] = None,
    ) -> MessageWithParts:
        return self._client.send_message(self.id, prompt, provider_id, model_id)

    def send_streaming(
        self,
        prompt: str,
        options: StreamOptions,
        provider_id: Optional[str] = None,
        model_id: Optional[str] = None,
    ) -> Optional[MessageWithParts]:
        """Streaming send; provider and model default to the client options."""
        return self._client.send_message_streaming(
            self.id, prompt, options, provider_id, model_id
        )

    def messages(self, limit: Optional[int] = None) -> List[MessageWithParts]:
        return self._client.get_messages(self.id, limit)

    def abort(self) -> bool:
        return self._client.abort_session(self.id)

    def destroy(self) -> bool:
        """Delete the session on the server."""
        return self._client.delete_session(self.id)

    def refresh(self) -> SessionInfo:
        """Re-fetch the session info from the server."""
        self.info = self._client.get_session_info(self.id)
        return self.info

    def __repr__(self) -> str:
        return f"Session(id={self.id!r}, title={self.title!r})"
