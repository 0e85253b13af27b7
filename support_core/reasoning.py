"""
Per-message reasoning dispatch.

One inbound message gets exactly one reasoning pass. Adaptive plans hand
the whole turn to the adaptive reasoner; standard plans run a bounded
completion / tool-execution loop here. Either way the turn ends with the
same side effects, in this order: user message persisted, assistant
message persisted, context cache updated, usage recorded.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Sequence

from .errors import ErrorKind, LockStoreUnavailable, Outcome, SupportCoreError
from .executor import format_result_for_llm
from .interfaces import (
    AdaptiveReasoner,
    LLMClient,
    PlanLookup,
    ToolExecutor,
    ToolRegistry,
    UsageLedger,
)
from .lifecycle import ConversationManager
from .locks import LockService, build_tool_fingerprint, canonical_json
from .logging_config import logger
from .phrases import looks_like_simulated_action, wants_human
from .prompts import (
    DUPLICATE_SUPPRESSED_MESSAGE,
    FALLBACK_RESPONSE,
    HALLUCINATED_ACTION_NUDGE,
    LOCK_UNAVAILABLE_MESSAGE,
    TOOL_REJECTED_TEMPLATE,
    build_system_prompt,
    error_message,
    limit_exceeded_message,
)
from .schemas import (
    ChatRequest,
    Completion,
    ContextMessage,
    Conversation,
    LimitDecision,
    MessageRole,
    PlanInfo,
    ReasoningMode,
    ToolCall,
    ToolCallSource,
    ToolDefinition,
    ToolOutcome,
    ToolOutcomeStatus,
    TurnResult,
    UsageRecord,
)
from .settings import settings
from .tools import (
    format_tools_for_native,
    normalize_native_tool_calls,
    parse_tool_calls,
    schema_problems,
    strip_tool_directives,
    validate,
)
from .usage import UsageRecorder, calculate_cost, split_total_tokens

MAX_FALLBACK_LENGTH = 500
FALLBACK_EXCERPT = 200
_MESSAGE_FIELD_RE = re.compile(r'"message"\s*:\s*"([^"]+)"')


@dataclass(frozen=True)
class DispatchLimits:
    max_tool_rounds: int = 3
    lock_ttl_seconds: int = 60


@dataclass
class _PassState:
    tokens_in: int = 0
    tokens_out: int = 0
    rounds: int = 0
    outcomes: list[ToolOutcome] = field(default_factory=list)

    def add_tokens(self, completion: Completion) -> None:
        if completion.tokens_in is not None and completion.tokens_out is not None:
            self.tokens_in += completion.tokens_in
            self.tokens_out += completion.tokens_out
        else:
            tokens_in, tokens_out = split_total_tokens(completion.tokens_total)
            self.tokens_in += tokens_in
            self.tokens_out += tokens_out

    @property
    def tokens_total(self) -> int:
        return self.tokens_in + self.tokens_out

    @property
    def executed(self) -> int:
        return sum(1 for o in self.outcomes if o.status is ToolOutcomeStatus.EXECUTED)


def fallback_from_outcomes(outcomes: Sequence[ToolOutcome]) -> str:
    """Best reply available when the model never summarised its tool results."""
    if not outcomes or not outcomes[-1].feedback:
        return FALLBACK_RESPONSE
    feedback = outcomes[-1].feedback
    if "message" in feedback.lower():
        match = _MESSAGE_FIELD_RE.search(feedback)
        if match:
            return match.group(1)
        if len(feedback) < MAX_FALLBACK_LENGTH:
            return feedback
        return feedback[:FALLBACK_EXCERPT] + "..."
    if len(feedback) < MAX_FALLBACK_LENGTH:
        return feedback
    return f"Based on the results: {feedback[:FALLBACK_EXCERPT]}..."


def _call_signature(calls: Sequence[ToolCall]) -> list[tuple[str, str]]:
    return sorted((c.name, canonical_json(c.arguments)) for c in calls)


class ReasoningDispatcher:
    def __init__(
        self,
        *,
        lifecycle: ConversationManager,
        plans: PlanLookup,
        usage_ledger: UsageLedger,
        llm: LLMClient,
        tools: ToolRegistry,
        executor: ToolExecutor,
        locks: LockService,
        adaptive: AdaptiveReasoner | None = None,
        usage_recorder: UsageRecorder | None = None,
        limits: DispatchLimits | None = None,
    ) -> None:
        self._lifecycle = lifecycle
        self._plans = plans
        self._ledger = usage_ledger
        self._llm = llm
        self._tools = tools
        self._executor = executor
        self._locks = locks
        self._adaptive = adaptive
        self._usage = usage_recorder or UsageRecorder(usage_ledger)
        self._limits = limits or DispatchLimits(
            max_tool_rounds=settings.max_tool_rounds,
            lock_ttl_seconds=settings.tool_lock_ttl_seconds,
        )

    # ------------------------------------------------------------------
    # entry points
    # ------------------------------------------------------------------

    async def process_message(self, request: ChatRequest) -> Outcome[TurnResult]:
        conversation, created = await self._lifecycle.get_or_create_conversation(
            request.client_id, request.session_id
        )

        if self._lifecycle.detect_conversation_end(request.message):
            farewell = await self._lifecycle.handle_conversation_end(
                conversation,
                request.session_id,
                request.message,
                save_user_message=not request.skip_user_message_save,
            )
            return Outcome.success(
                TurnResult(
                    conversation_id=conversation.id,
                    response=farewell,
                    conversation_ended=True,
                    new_conversation=created,
                )
            )

        plan = await self._resolve_plan(request.plan_name)
        decision = await self._ledger.check_limit(request.client_id, plan)
        if not decision.allowed or decision.exceeded:
            logger.info(
                "client %s over its %s plan limit (limit=%s)",
                request.client_id,
                plan.name,
                decision.limit,
            )
            return Outcome.failure(
                ErrorKind.LIMIT_EXCEEDED,
                limit_exceeded_message(request.language),
                details={"limit": decision.limit, "remaining": decision.remaining},
            )

        return await self.dispatch(
            request, conversation, plan=plan, new_conversation=created, limit=decision
        )

    async def dispatch(
        self,
        request: ChatRequest,
        conversation: Conversation,
        *,
        plan: PlanInfo | None = None,
        new_conversation: bool = False,
        limit: LimitDecision | None = None,
    ) -> Outcome[TurnResult]:
        plan = plan or await self._resolve_plan(request.plan_name)
        mode = plan.reasoning_mode
        if mode is ReasoningMode.ADAPTIVE and self._adaptive is None:
            logger.warning("plan %s wants adaptive reasoning but none is configured", plan.name)
            mode = ReasoningMode.STANDARD

        tools = self._usable_tools(await self._tools.enabled_tools_for(request.client_id))
        system_prompt = build_system_prompt(
            request.system_prompt,
            tools,
            native_tools=self._llm.supports_native_tools,
            language=request.language,
        )
        context = await self._lifecycle.load_context(request.session_id, conversation, system_prompt)

        # A caller that already stored the user message may find it in the rebuilt context.
        user_in_context = bool(
            context and context[-1].role == "user" and context[-1].content == request.message
        )
        if not request.skip_user_message_save:
            await self._lifecycle.add_message(conversation.id, MessageRole.USER, request.message)
        if new_conversation:
            await self._lifecycle.add_debug_message(
                conversation.id, system_prompt, kind="system_prompt"
            )
        if not user_in_context:
            context = [*context, ContextMessage(role="user", content=request.message)]

        needs_escalation = wants_human(request.message, request.language)
        state = _PassState()

        adaptive = self._adaptive if mode is ReasoningMode.ADAPTIVE else None
        try:
            if adaptive is not None:
                turn = await adaptive.run_turn(request, conversation, context)
                state.tokens_in += turn.tokens_in
                state.tokens_out += turn.tokens_out
                response = turn.content
                needs_escalation = needs_escalation or turn.needs_escalation
                tool_calls = turn.tool_calls
            else:
                response = await self._run_standard(request, conversation, context, tools, state)
                tool_calls = state.executed
        except SupportCoreError as exc:
            logger.error(
                "reasoning pass failed for conversation %s: %s", conversation.id, exc.message
            )
            return await self._fail_turn(
                request, conversation, plan, state, exc, new_conversation=new_conversation
            )

        return await self._finalize(
            request,
            conversation,
            plan,
            state,
            response=response,
            mode=mode,
            tool_calls=tool_calls,
            needs_escalation=needs_escalation,
            new_conversation=new_conversation,
            user_in_context=user_in_context,
            limit=limit,
        )

    # ------------------------------------------------------------------
    # standard mode
    # ------------------------------------------------------------------

    async def _run_standard(
        self,
        request: ChatRequest,
        conversation: Conversation,
        context: list[ContextMessage],
        tools: list[ToolDefinition],
        state: _PassState,
    ) -> str:
        native = self._llm.supports_native_tools
        declarations = format_tools_for_native(tools, self._llm.provider) if tools and native else None
        tools_by_name = {t.name.lower(): t for t in tools}
        messages: list[dict[str, Any]] = [m.as_llm_message() for m in context]

        last_signature: list[tuple[str, str]] | None = None
        nudged = False
        max_rounds = max(1, self._limits.max_tool_rounds)

        for round_idx in range(max_rounds):
            completion = await self._llm.complete(messages, declarations)
            state.rounds += 1
            state.add_tokens(completion)

            calls = normalize_native_tool_calls(completion.tool_calls)
            if not calls and tools:
                calls = parse_tool_calls(completion.content) or []

            if not calls:
                text = strip_tool_directives(completion.content)
                if text:
                    if (
                        tools
                        and not nudged
                        and not state.outcomes
                        and round_idx + 1 < max_rounds
                        and looks_like_simulated_action(text, request.message)
                    ):
                        logger.warning(
                            "model claimed an action without calling a tool (conversation %s)",
                            conversation.id,
                        )
                        nudged = True
                        messages.append({"role": "assistant", "content": completion.content})
                        messages.append({"role": "system", "content": HALLUCINATED_ACTION_NUDGE})
                        continue
                    return text
                if state.outcomes:
                    logger.warning("empty completion after tool execution, using tool result")
                    return fallback_from_outcomes(state.outcomes)
                continue

            signature = _call_signature(calls)
            if signature == last_signature:
                logger.warning(
                    "model repeated the same tool calls, stopping the loop (conversation %s)",
                    conversation.id,
                )
                return strip_tool_directives(completion.content) or fallback_from_outcomes(
                    state.outcomes
                )
            last_signature = signature

            native_calls = all(c.source is ToolCallSource.NATIVE for c in calls)
            assistant_message: dict[str, Any] = {"role": "assistant", "content": completion.content or ""}
            if native_calls:
                assistant_message["tool_calls"] = [
                    {
                        "id": c.id,
                        "type": "function",
                        "function": {"name": c.name, "arguments": json.dumps(c.arguments)},
                    }
                    for c in calls
                ]
            messages.append(assistant_message)

            round_outcomes = []
            for call in calls:
                outcome = await self._execute_call(call, tools_by_name, conversation, request.client_id)
                state.outcomes.append(outcome)
                round_outcomes.append(outcome)

            if native_calls:
                messages.extend(
                    {"role": "tool", "tool_call_id": o.call_id, "content": o.feedback}
                    for o in round_outcomes
                )
            else:
                results = "\n\n".join(f"[{o.name}] {o.feedback}" for o in round_outcomes)
                messages.append({"role": "system", "content": f"Tool results:\n{results}"})

        logger.info(
            "tool loop reached %d round(s) for conversation %s", max_rounds, conversation.id
        )
        return fallback_from_outcomes(state.outcomes)

    async def _execute_call(
        self,
        call: ToolCall,
        tools_by_name: dict[str, ToolDefinition],
        conversation: Conversation,
        client_id: str,
    ) -> ToolOutcome:
        await self._lifecycle.add_debug_message(
            conversation.id,
            f"Tool Call: {call.name}\nArguments: {json.dumps(call.arguments, ensure_ascii=False)}",
            kind="tool_call",
            metadata={"tool_call_id": call.id, "tool_name": call.name, "arguments": call.arguments},
        )

        tool = tools_by_name.get(call.name.lower())
        if tool is None:
            logger.warning("model called unknown tool %s", call.name)
            return ToolOutcome(
                call_id=call.id,
                name=call.name,
                status=ToolOutcomeStatus.UNKNOWN_TOOL,
                arguments=call.arguments,
                feedback=f'Error: Tool "{call.name}" is not available',
            )

        result = validate(tool, call.arguments)
        if not result.valid:
            details = "; ".join(result.errors)
            logger.info("blocked tool call %s: %s", tool.name, details)
            outcome = ToolOutcome(
                call_id=call.id,
                name=tool.name,
                status=ToolOutcomeStatus.BLOCKED,
                arguments=call.arguments,
                errors=list(result.errors),
                feedback=TOOL_REJECTED_TEMPLATE.format(errors=details),
            )
            await self._trace_outcome(conversation, outcome)
            return outcome

        key = build_tool_fingerprint(conversation.id, tool.name, result.coerced_args)
        try:
            async with self._locks.hold(key, self._limits.lock_ttl_seconds) as acquired:
                if not acquired:
                    logger.warning("tool %s already running with the same arguments", tool.name)
                    return ToolOutcome(
                        call_id=call.id,
                        name=tool.name,
                        status=ToolOutcomeStatus.DUPLICATE_SUPPRESSED,
                        arguments=result.coerced_args,
                        feedback=DUPLICATE_SUPPRESSED_MESSAGE,
                    )
                tool_result = await self._executor.invoke(
                    tool,
                    result.coerced_args,
                    client_id=client_id,
                    conversation_id=conversation.id,
                )
        except LockStoreUnavailable:
            logger.error("lock store unavailable, refusing to run tool %s", tool.name)
            return ToolOutcome(
                call_id=call.id,
                name=tool.name,
                status=ToolOutcomeStatus.LOCK_UNAVAILABLE,
                arguments=result.coerced_args,
                feedback=LOCK_UNAVAILABLE_MESSAGE,
            )

        if tool_result.ok:
            status = ToolOutcomeStatus.EXECUTED
            feedback = format_result_for_llm(tool_result.data)
        else:
            status = ToolOutcomeStatus.FAILED
            feedback = f"Tool execution failed: {tool_result.error or 'unknown error'}"
        logger.info(
            "tool %s %s in %sms",
            tool.name,
            "succeeded" if tool_result.ok else "failed",
            tool_result.duration_ms,
        )

        outcome = ToolOutcome(
            call_id=call.id,
            name=tool.name,
            status=status,
            arguments=result.coerced_args,
            errors=[tool_result.error] if tool_result.error else [],
            duration_ms=tool_result.duration_ms,
            feedback=feedback,
        )
        await self._trace_outcome(conversation, outcome)
        return outcome

    async def _trace_outcome(self, conversation: Conversation, outcome: ToolOutcome) -> None:
        await self._lifecycle.add_debug_message(
            conversation.id,
            outcome.feedback,
            kind="tool_result",
            metadata={
                "tool_call_id": outcome.call_id,
                "tool_name": outcome.name,
                "status": outcome.status.value,
                "duration_ms": outcome.duration_ms,
                "errors": outcome.errors,
            },
        )

    # ------------------------------------------------------------------
    # finalization
    # ------------------------------------------------------------------

    @staticmethod
    def _usable_tools(tools: Sequence[ToolDefinition]) -> list[ToolDefinition]:
        usable = []
        for tool in tools:
            problems = schema_problems(tool.parameters)
            if problems:
                logger.warning(
                    "not offering tool %s, its parameter schema is unusable: %s",
                    tool.name,
                    "; ".join(problems),
                )
                continue
            usable.append(tool)
        return usable

    async def _resolve_plan(self, plan_name: str | None) -> PlanInfo:
        plan = await self._plans.get(plan_name)
        if plan is None:
            return PlanInfo(name=plan_name or "default")
        return plan

    async def _record_usage(
        self,
        request: ChatRequest,
        conversation: Conversation,
        plan: PlanInfo,
        state: _PassState,
        new_conversation: bool,
        tool_calls: int,
    ) -> bool:
        usage = UsageRecord(
            client_id=request.client_id,
            conversation_id=conversation.id,
            tokens_in=state.tokens_in,
            tokens_out=state.tokens_out,
            tool_calls=tool_calls,
            cost=calculate_cost(plan, state.tokens_in, state.tokens_out),
            new_conversation=new_conversation,
        )
        return await self._usage.record(usage)

    async def _fail_turn(
        self,
        request: ChatRequest,
        conversation: Conversation,
        plan: PlanInfo,
        state: _PassState,
        exc: SupportCoreError,
        *,
        new_conversation: bool,
        tool_calls: int = 0,
    ) -> Outcome[TurnResult]:
        """Bill whatever the pass consumed and hand back a retryable failure."""
        if state.tokens_total > 0 or tool_calls:
            await self._record_usage(
                request, conversation, plan, state, new_conversation, tool_calls
            )
        return Outcome.failure(
            exc.kind,
            error_message(request.language),
            details={"conversation_id": conversation.id, "reason": exc.message},
        )

    async def _finalize(
        self,
        request: ChatRequest,
        conversation: Conversation,
        plan: PlanInfo,
        state: _PassState,
        *,
        response: str,
        mode: ReasoningMode,
        tool_calls: int,
        needs_escalation: bool,
        new_conversation: bool,
        user_in_context: bool,
        limit: LimitDecision | None,
    ) -> Outcome[TurnResult]:
        response = response.strip() or FALLBACK_RESPONSE
        turn_messages = [ContextMessage(role="assistant", content=response)]
        if not user_in_context:
            turn_messages.insert(0, ContextMessage(role="user", content=request.message))

        try:
            await self._lifecycle.add_message(
                conversation.id,
                MessageRole.ASSISTANT,
                response,
                tokens=state.tokens_total or None,
                metadata={"mode": mode.value, "rounds": state.rounds, "tool_calls": tool_calls},
            )
            await self._lifecycle.append_to_context(
                request.session_id, conversation, turn_messages
            )
        except SupportCoreError as exc:
            logger.error(
                "failed to persist reply for conversation %s: %s", conversation.id, exc.message
            )
            return await self._fail_turn(
                request,
                conversation,
                plan,
                state,
                exc,
                new_conversation=new_conversation,
                tool_calls=tool_calls,
            )
        except Exception:
            # Tokens were spent either way.
            await self._record_usage(
                request, conversation, plan, state, new_conversation, tool_calls
            )
            raise

        recorded = await self._record_usage(
            request, conversation, plan, state, new_conversation, tool_calls
        )

        if needs_escalation:
            logger.info("conversation %s asked for a human agent", conversation.id)

        return Outcome.success(
            TurnResult(
                conversation_id=conversation.id,
                response=response,
                mode=mode,
                new_conversation=new_conversation,
                needs_escalation=needs_escalation,
                tool_outcomes=state.outcomes,
                tokens_in=state.tokens_in,
                tokens_out=state.tokens_out,
                rounds=state.rounds,
                usage_recorded=recorded,
                remaining=limit.remaining if limit is not None else None,
            )
        )


__all__ = ["DispatchLimits", "ReasoningDispatcher", "fallback_from_outcomes"]
