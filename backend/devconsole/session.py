"""
Session controller.

Drives one conversation through its states::

    idle -> streaming -> idle
                      -> awaiting_confirmation -> executing -> streaming ...
                      -> executing (auto-execute) -> streaming ...

A turn streams model output into the last message. If the model proposed
actions, only the first one goes to the confirmation gate. Once approved,
it runs through the sandbox client and its result is fed back to the model
as a new turn. Prompts submitted while the session is busy wait in the
prompt queue and run in arrival order as soon as it is idle again.
"""
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional

from devconsole.client import SandboxClient
from devconsole.errors import ExecutionError, GateError, ProviderError, ValidationError
from devconsole.gate import ConfirmationGate, GateState
from devconsole.models import (
    ActionRequest, ActionResultPart, LogEntry, Message, PendingAction,
    ProposedActionPart, QueuedPrompt, SessionSnapshot, SessionState, TextPart,
)
from devconsole.prompt_queue import PromptQueue
from devconsole.provider import CompletionProvider, FunctionResponse, TurnInput

logger = logging.getLogger(__name__)

Listener = Callable[[Dict[str, Any]], Awaitable[None]]


def _result_payload(data: Any) -> Dict[str, Any]:
    return data if isinstance(data, dict) else {"result": data}


class SessionController:
    """Owns one conversation; the only writer of its state"""

    def __init__(
        self,
        provider: CompletionProvider,
        client: SandboxClient,
        auto_execute: bool = False,
        session_id: Optional[str] = None,
    ):
        self.id = session_id or str(uuid.uuid4())
        self.client = client
        self.conversation = provider.start_conversation()
        self.auto_execute = auto_execute
        self.messages: List[Message] = []
        self.gate = ConfirmationGate()
        self.queue = PromptQueue()
        self.state: SessionState = "idle"
        self.action_log: List[LogEntry] = []
        self.closed = False
        self._listeners: List[Listener] = []

    # --- observers --------------------------------------------------------

    @property
    def busy(self) -> bool:
        return self.state != "idle" or not self.gate.is_empty

    @property
    def pending_action(self) -> Optional[PendingAction]:
        return self.gate.pending

    def subscribe(self, listener: Listener):
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _emit(self, event: str, data: Any = None):
        for listener in list(self._listeners):
            await listener({"event": event, "data": data})

    async def _set_state(self, state: SessionState):
        self.state = state
        await self._emit("state", {"state": state, "busy": self.busy, "queued": len(self.queue)})

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            id=self.id,
            state=self.state,
            busy=self.busy,
            auto_execute=self.auto_execute,
            messages=self.messages,
            pending_action=self.gate.pending,
            queue=self.queue.snapshot(),
        )

    # --- user operations --------------------------------------------------

    async def submit(self, text: str) -> Optional[QueuedPrompt]:
        """
        Start a turn with the user's text, or queue it if the session is busy.
        Returns the queued prompt in the latter case.
        """
        if self.closed:
            raise GateError("Session is closed.")
        if self.busy:
            prompt = self.queue.enqueue(text)
            logger.debug("Session %s busy; queued prompt #%d", self.id, prompt.seq)
            await self._emit("queued", prompt.model_dump())
            return prompt
        await self._then_drain(self._user_turn(text))
        return None

    async def confirm(self):
        """Approve the pending action, execute it and continue the conversation"""
        if self.state != "awaiting_confirmation":
            raise GateError("There is no action awaiting confirmation.")
        self.gate.confirm()
        await self._then_drain(self._execute_approved())

    async def cancel(self) -> PendingAction:
        """Discard the pending action; the model is not told until the next prompt"""
        action = self.gate.cancel()
        self._log(action, "cancelled")
        self.conversation.abandon_call(f"Proposed action `{action.name}` was cancelled by the user and not executed.")
        self.messages.append(Message(
            role="model",
            parts=[TextPart(text=f"Action cancelled: `{action.name}` was not executed.")],
            frozen=True,
        ))
        await self._emit("message", self.messages[-1].model_dump(mode="json"))
        await self._set_state("idle")
        await self._drain_queue()
        return action

    async def set_auto_execute(self, enabled: bool):
        self.auto_execute = enabled
        logger.info("Session %s auto-execute %s", self.id, "on" if enabled else "off")

    def close(self):
        self.closed = True
        self.queue.clear()
        self._listeners.clear()
        logger.info("Session %s closed", self.id)

    # --- continuation -----------------------------------------------------

    async def feed_action_result(self, name: str, payload: Dict[str, Any]):
        """Send an action's result back to the model and stream its reply"""
        self.messages.append(Message(role="user", parts=[ActionResultPart(name=name, result=payload)], frozen=True))
        await self._emit("action_result", {"name": name, "result": payload})
        await self._run_turn(FunctionResponse(name=name, response=payload))

    # --- internals --------------------------------------------------------

    async def _then_drain(self, operation: Awaitable[None]):
        try:
            await operation
        except ProviderError:
            await self._drain_queue()
            raise
        await self._drain_queue()

    async def _drain_queue(self):
        while not self.busy and self.queue and not self.closed:
            prompt = self.queue.pop_head()
            logger.debug("Session %s running queued prompt #%d", self.id, prompt.seq)
            try:
                await self._user_turn(prompt.text)
            except ProviderError:
                # Already reported through the error event; move on to the next prompt
                continue

    async def _user_turn(self, text: str):
        self.messages.append(Message(role="user", parts=[TextPart(text=text)], frozen=True))
        await self._emit("message", self.messages[-1].model_dump(mode="json"))
        await self._run_turn(text)

    async def _run_turn(self, turn: TurnInput):
        await self._set_state("streaming")
        message = Message(role="model", parts=[TextPart()])
        self.messages.append(message)
        proposed = []

        try:
            async for chunk in self.conversation.send_stream(turn):
                if chunk.text:
                    message.parts[0].text += chunk.text
                    await self._emit("message", message.model_dump(mode="json"))
                if chunk.function_calls:
                    proposed.extend(chunk.function_calls)
        except Exception as e:
            message.frozen = True
            logger.exception("Provider failed during session %s", self.id)
            await self._set_state("idle")
            await self._emit("error", {"kind": "provider", "message": str(e)})
            if isinstance(e, ProviderError):
                raise
            raise ProviderError(f"An error occurred: {e}") from e

        if proposed:
            if len(proposed) > 1:
                logger.warning("Model proposed %d actions; keeping only %s", len(proposed), proposed[0].name)
            message.parts.append(ProposedActionPart(name=proposed[0].name, args=proposed[0].args))
        message.frozen = True

        if not proposed:
            await self._set_state("idle")
            return

        pending = self.gate.propose(proposed[0], auto_execute=self.auto_execute)
        if pending is None:
            await self._set_state("idle")
            return
        await self._emit("pending_action", pending.model_dump(mode="json"))
        if self.gate.state == GateState.APPROVED:
            await self._execute_approved()
        else:
            await self._set_state("awaiting_confirmation")

    async def _execute_approved(self):
        action = self.gate.take()
        await self._set_state("executing")
        request = ActionRequest(action=action.name, payload=action.args)

        try:
            data = await self.client.invoke(request)
        except ValidationError as e:
            # Fed back so the model can correct itself (e.g. list files after a bad path)
            self._log(action, "rejected", error=str(e))
            await self.feed_action_result(action.name, {"success": False, "error": str(e)})
            return
        except ExecutionError as e:
            self._log(action, "failed", error=str(e))
            self.conversation.abandon_call(f"Action `{action.name}` was executed but failed: {e}")
            self.messages.append(Message(
                role="model",
                parts=[TextPart(text=f"Action failed: `{action.name}`: {e}")],
                frozen=True,
            ))
            await self._emit("error", {"kind": "execution", "action": action.name, "message": str(e)})
            await self._set_state("idle")
            return
        except Exception as e:
            self._log(action, "failed", error=str(e))
            self.conversation.abandon_call(f"Action `{action.name}` was executed but failed unexpectedly.")
            await self._set_state("idle")
            raise

        self._log(action, "executed", result=data)
        await self.feed_action_result(action.name, _result_payload(data))

    def _log(self, action: PendingAction, outcome: str, result: Any = None, error: str = None):
        self.action_log.append(LogEntry(
            action_id=action.id,
            action=action.name,
            args=action.args,
            risk=action.risk,
            outcome=outcome,
            result=result,
            error=error,
            session_id=self.id,
        ))
