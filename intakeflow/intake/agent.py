# intakeflow/intake/agent.py
from __future__ import annotations

import copy
import logging
from datetime import datetime
from typing import List, Optional, Tuple

from intakeflow.intake.prompts import build_doctor_messages, build_patient_messages
from intakeflow.intake.responder import parse_agent_reply
from intakeflow.intake.routing import (
    calculate_completeness,
    determine_agent,
    meets_ready_criteria,
)
from intakeflow.intake.schema import MedicalData, merge_medical_data
from intakeflow.intake.stages import AgentRole, SessionStatus, later_of, next_role
from intakeflow.intake.state import IntakeState, IntakeTurn, TurnResult
from intakeflow.intake.summarizer import build_handover_with_llm
from intakeflow.intake import tracking
from intakeflow.llm import LLMClient, call_with_deadline
from intakeflow.models import utcnow
from intakeflow.triage import route

logger = logging.getLogger(__name__)


class IntakeStateMachine:
    """
    IntakeStateMachine advances one intake session by one patient turn.

    Roles, in the order a session moves through them:
      - Triage               (chief complaint)
      - ClinicalInvestigator (history of present illness)
      - RecordsClerk         (records / test results check)
      - HistorySpecialist    (medications, allergies, past history)
      - HandoverSpecialist   (final sweep, SBAR)

    Routing is recomputed from the medical data every turn, but the active
    role never moves backwards. Anti-loop rules (follow-up limits, answered
    topics, termination phrases, message limits) can push it forward early.

    The AI call is bounded by a deadline. Failures become a contextual
    fallback reply and bump consecutive_errors; once that reaches the limit
    the AI is skipped for one turn and the patient is asked to rephrase.
    """

    # "done" only finishes the intake once there is something to hand over
    DONE_MIN_COMPLETENESS = 30

    # hpi length at which a completion phrase counts as "enough said"
    COMPLETION_MIN_HPI_CHARS = 20

    MAX_HISTORY_TURNS = 40

    DOCTOR_FALLBACK = "I'm unable to answer right now. Please try again in a moment."

    GREETING = (
        "Hello! I'll ask a few questions to prepare for your visit. "
        "To start, can you tell me in your own words what brings you in today?"
    )

    def __init__(
        self,
        llm_client: Optional[LLMClient],
        timeout: float = 25.0,
        max_consecutive_errors: int = tracking.MAX_CONSECUTIVE_ERRORS,
    ):
        self.llm_client = llm_client
        self.timeout = timeout
        self.max_consecutive_errors = max_consecutive_errors

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(self) -> Tuple[IntakeState, str]:
        """
        Fresh state plus the first question to show the patient.
        """
        return IntakeState(), self.GREETING

    def step(
        self,
        state: IntakeState,
        message: str,
        history: Optional[List[IntakeTurn]] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[IntakeState, TurnResult]:
        """
        Take a patient message and return:
          - the updated state (the input state is not modified)
          - the turn result (reply, active agent, completeness, readiness)
        """
        now = now or utcnow()
        history = (history or [])[-self.MAX_HISTORY_TURNS:]
        state = copy.deepcopy(state)

        if state.status == SessionStatus.NOT_STARTED:
            state.status = SessionStatus.IN_PROGRESS
            state.started_at = now

        agent = state.current_agent
        data = state.medical_data
        forced: Optional[AgentRole] = None

        # Topics mentioned in this message are never asked about again
        new_info = tracking.contains_new_information(message, state.answered_topics)
        state.answered_topics = tracking.merge_topics(
            state.answered_topics, tracking.extract_answered_topics(message)
        )

        # "No" to the records or history question completes that check
        if tracking.is_negative_response(message):
            if agent == AgentRole.RECORDS_CLERK:
                data = data.model_copy(update={"records_check_completed": True})
                forced = next_role(agent)
            elif agent == AgentRole.HISTORY_SPECIALIST:
                data = data.model_copy(update={"history_check_completed": True})
                forced = next_role(agent)

        if (
            forced is None
            and not new_info
            and tracking.follow_up_limit_reached(state.follow_up_counts, agent)
        ):
            logger.info(f"Follow-up limit reached for {agent.value}, advancing")
            forced = next_role(agent)

        signal = tracking.detect_termination_signal(
            message,
            agent,
            state.ai_message_count,
            state.completeness,
            has_chief_complaint=bool(data.chief_complaint),
            has_hpi=len((data.hpi or "").strip()) > self.COMPLETION_MIN_HPI_CHARS,
        )
        if signal is None and tracking.is_completion_phrase(message):
            forced = later_of(next_role(agent), forced)

        if signal is not None:
            short = self._short_circuit(state, data, signal, history, now)
            if short is not None:
                return short

            # a refused "done" leaves the active role where it is
            if signal.reason != "done_command":
                state.termination_reason = signal.reason
                forced = later_of(signal.target_agent, forced)
                logger.info(f"Termination signal '{signal.reason}' -> {signal.target_agent.value}")

        # --- AI turn ---
        state.medical_data = data
        active = later_of(determine_agent(data), later_of(agent, forced))

        if not state.has_offered_conclusion and tracking.should_offer_conclusion(
            state.ai_message_count
        ):
            state.has_offered_conclusion = True

        used_fallback = True
        if state.consecutive_errors >= self.max_consecutive_errors:
            # breaker open: skip the AI this turn, try it again next turn
            logger.warning(
                f"{state.consecutive_errors} consecutive AI failures, asking patient to rephrase"
            )
            reply = tracking.REPHRASE_PROMPT
            state.consecutive_errors = self.max_consecutive_errors - 1
        else:
            messages = build_patient_messages(state, active, history, message)
            raw = call_with_deadline(self.llm_client, messages, timeout=self.timeout, temperature=0.3)
            parsed = parse_agent_reply(raw) if raw is not None else None

            if parsed is None:
                reply = tracking.fallback_reply(active, message)
                state.consecutive_errors += 1
            else:
                used_fallback = False
                reply = parsed.reply
                data = merge_medical_data(data, parsed.update)
                if parsed.thought is not None:
                    state.doctor_thought = parsed.thought
                state.consecutive_errors = 0
                state.follow_up_counts = tracking.increment_follow_up(
                    state.follow_up_counts, active
                )

        state.ai_message_count += 1
        return self._finish_turn(state, data, active, reply, used_fallback, history, now)

    def step_doctor(
        self,
        state: IntakeState,
        message: str,
        history: Optional[List[IntakeTurn]] = None,
    ) -> Tuple[IntakeState, TurnResult]:
        """
        Doctor questions about the intake. Answered in decision-support mode;
        the patient-facing state (role, counters, status) is left alone.
        """
        history = (history or [])[-self.MAX_HISTORY_TURNS:]
        messages = build_doctor_messages(state, history, message)
        raw = call_with_deadline(self.llm_client, messages, timeout=self.timeout, temperature=0.3)
        parsed = parse_agent_reply(raw) if raw is not None else None

        reply = parsed.reply if parsed else self.DOCTOR_FALLBACK
        return state, TurnResult(
            reply=reply,
            active_agent=state.current_agent,
            completeness=state.completeness,
            is_ready=state.is_complete,
            used_fallback=parsed is None,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _short_circuit(
        self,
        state: IntakeState,
        data: MedicalData,
        signal: tracking.TerminationSignal,
        history: List[IntakeTurn],
        now: datetime,
    ) -> Optional[Tuple[IntakeState, TurnResult]]:
        """
        done/skip commands answer with an acknowledgement and no AI call.
        Returns None when the turn should go on to the AI after all.
        """
        if not signal.short_circuits:
            return None

        if signal.reason == "done_command":
            if not (data.chief_complaint or state.completeness >= self.DONE_MIN_COMPLETENESS):
                # nothing to hand over yet, let the agent keep asking
                return None
            state.termination_reason = signal.reason
            state.ai_message_count += 1
            return self._finish_turn(
                state, data, signal.target_agent, signal.acknowledgement,
                used_fallback=False, history=history, now=now, force_ready=True,
            )

        # skipping a check section counts as having done it
        skipped = state.current_agent
        if skipped == AgentRole.RECORDS_CLERK:
            data = data.model_copy(update={"records_check_completed": True})
        elif skipped == AgentRole.HISTORY_SPECIALIST:
            data = data.model_copy(update={"history_check_completed": True})

        state.termination_reason = signal.reason
        state.ai_message_count += 1
        return self._finish_turn(
            state, data, later_of(skipped, signal.target_agent), signal.acknowledgement,
            used_fallback=False, history=history, now=now,
        )

    def _finish_turn(
        self,
        state: IntakeState,
        data: MedicalData,
        floor: AgentRole,
        reply: str,
        used_fallback: bool,
        history: List[IntakeTurn],
        now: datetime,
        force_ready: bool = False,
    ) -> Tuple[IntakeState, TurnResult]:
        active = later_of(determine_agent(data), later_of(state.current_agent, floor))

        decision = None
        if data.vitals is not None and data.vitals.has_any_reading():
            decision = route(data.vitals)
            data = data.model_copy(update={"triage": decision})

        data = data.model_copy(update={"current_agent": active.value})
        state.medical_data = data
        state.current_agent = active

        became_ready = False
        if not state.is_complete and (force_ready or meets_ready_criteria(data)):
            state.status = SessionStatus.READY
            state.completed_at = now
            state.current_agent = AgentRole.HANDOVER_SPECIALIST
            state.medical_data = data.model_copy(
                update={"current_agent": AgentRole.HANDOVER_SPECIALIST.value}
            )
            state.clinical_handover = build_handover_with_llm(
                state.medical_data, history, self.llm_client, self.timeout
            )
            became_ready = True
            logger.info("Intake ready for review")

        state.completeness = max(
            state.completeness,
            calculate_completeness(
                state.medical_data, has_handover=state.clinical_handover is not None
            ),
        )

        return state, TurnResult(
            reply=reply,
            active_agent=state.current_agent,
            completeness=state.completeness,
            is_ready=state.is_complete,
            became_ready=became_ready,
            used_fallback=used_fallback,
            termination_reason=state.termination_reason,
            triage=decision,
        )
