from typing import Optional

from starlette.types import Message, Send


class ReplyCommittedError(RuntimeError):
    pass


class Reply:
    """ASGI ``send`` for one HTTP exchange that remembers what went out.

    The response is committed once its start message has been sent. A failure
    after that point can only ``abort`` it, which ends the body and drops any
    further output.
    """

    def __init__(self, send: Send) -> None:
        self._send = send
        self.status_code: Optional[int] = None
        self.committed = False
        self.finished = False
        self.aborted = False

    @property
    def accepted(self) -> bool:
        return self.status_code is not None and self.status_code < 400

    async def __call__(self, message: Message) -> None:
        if self.aborted:
            return
        if message["type"] == "http.response.start":
            if self.committed:
                raise ReplyCommittedError("Reply already committed")
            self.status_code = message["status"]
            self.committed = True
        elif message["type"] == "http.response.body" and not message.get("more_body", False):
            self.finished = True
        await self._send(message)

    async def abort(self) -> None:
        if self.aborted:
            return
        if self.committed and not self.finished:
            await self._send({"type": "http.response.body", "body": b"", "more_body": False})
            self.finished = True
        self.committed = True
        self.aborted = True
