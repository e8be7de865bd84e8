"""Judge-panel consensus for AI-resolved markets."""

import asyncio
import logging
import math
from collections import Counter
from datetime import datetime, timezone

from .providers import Reasoner
from .types import MAX_CONFIDENCE_BPS, ConsensusResult, ConsensusVote, Verdict
from .utils import parse_llm_json

logger = logging.getLogger(__name__)

CONSORTIUM_JUDGES = 5

JUDGE_INSTRUCTIONS = """\
You are a prediction market oracle. Verify the event using the provided search tool.
Current Time: {now}
OUTPUT JSON ONLY: {{ "result": "YES" | "NO" | "INCONCLUSIVE", "confidence": <0-10000> }}
Rules:
- YES: Event happened.
- NO: Event did NOT happen and deadline passed.
- INCONCLUSIVE: Event not happened yet but window still open, or ambiguous.
"""

JUDGE_PROMPT = 'Market Question: "{question}". Has this happened? Return JSON.'


def parse_vote(judge_index: int, raw: str) -> ConsensusVote:
    """Parse one judge's answer.

    An unknown result becomes INCONCLUSIVE; a confidence that is not a whole
    number in [0, 10000] becomes 0. Unparseable text raises ValueError.
    """
    data = parse_llm_json(raw)

    try:
        verdict = Verdict(str(data.get("result", "")).upper())
    except ValueError:
        verdict = Verdict.INCONCLUSIVE

    confidence = data.get("confidence")
    if isinstance(confidence, float) and confidence.is_integer():
        confidence = int(confidence)
    if isinstance(confidence, bool) or not isinstance(confidence, int) or not 0 <= confidence <= MAX_CONFIDENCE_BPS:
        confidence = 0

    return ConsensusVote(judge_index=judge_index, verdict=verdict, confidence_bps=confidence)


def tally_votes(votes: list[ConsensusVote]) -> tuple[Verdict, dict[str, int]]:
    """Return the strict plurality winner; any tie at the top is INCONCLUSIVE."""
    counts = Counter(v.verdict for v in votes)
    tally = {verdict.value: counts.get(verdict, 0) for verdict in Verdict}

    top = max(tally.values(), default=0)
    leaders = [name for name, count in tally.items() if count == top]
    if top == 0 or len(leaders) > 1:
        return Verdict.INCONCLUSIVE, tally
    return Verdict(leaders[0]), tally


class ConsensusEngine:
    """Ask the reasoning service one or five times and aggregate the answers."""

    def __init__(self, reasoner: Reasoner, judge_count: int = CONSORTIUM_JUDGES, timeout: float | None = None):
        self.reasoner = reasoner
        self.judge_count = judge_count
        self.timeout = timeout

    async def _ask(self, judge_index: int, instructions: str, prompt: str, question: str) -> ConsensusVote:
        call = self.reasoner.generate(instructions, prompt, search_query=question)
        if self.timeout is not None:
            call = asyncio.wait_for(call, timeout=self.timeout)
        response = await call
        vote = parse_vote(judge_index, response.text)
        return vote.model_copy(update={"raw_trace": response.trace})

    async def _safe_judge(self, judge_index: int, instructions: str, prompt: str, question: str) -> ConsensusVote:
        """Call one judge, scoring any failure as an INCONCLUSIVE vote with zero confidence."""
        try:
            vote = await self._ask(judge_index, instructions, prompt, question)
        except Exception:
            logger.exception("[Judge %d] Failed", judge_index)
            return ConsensusVote(judge_index=judge_index, verdict=Verdict.INCONCLUSIVE, confidence_bps=0)
        logger.info("[Judge %d] Voted: %s (Conf: %d)", judge_index, vote.verdict.value, vote.confidence_bps)
        return vote

    async def run(self, question: str, consortium: bool = False) -> ConsensusResult:
        """
        Judge a market question.

        Consortium mode runs the full panel concurrently and waits for every
        judge. Rules:
        - the option with strictly the most votes wins
        - a shared top count is INCONCLUSIVE
        - confidence = floor(mean of every judge's confidence, failures count as 0)

        Otherwise a single judge runs and its answer is passed through.
        """
        instructions = JUDGE_INSTRUCTIONS.format(now=datetime.now(timezone.utc).isoformat())
        prompt = JUDGE_PROMPT.format(question=question)

        if not consortium:
            logger.info("Standard mode: single judge")
            vote = await self._safe_judge(1, instructions, prompt, question)
            return ConsensusResult(
                verdict=vote.verdict,
                confidence_bps=vote.confidence_bps,
                judges=1,
                tally={v.value: int(v == vote.verdict) for v in Verdict},
                votes=[vote],
                trace=vote.raw_trace,
                summary=f"Judge verdict: {vote.verdict.value} (confidence {vote.confidence_bps})",
            )

        logger.info("Consortium mode: %d judges summoned", self.judge_count)
        tasks = [
            self._safe_judge(i + 1, instructions, prompt, question)
            for i in range(self.judge_count)
        ]
        votes: list[ConsensusVote] = list(await asyncio.gather(*tasks))

        verdict, tally = tally_votes(votes)
        confidence = math.floor(sum(v.confidence_bps for v in votes) / len(votes))
        summary = f"Consortium verdict: {verdict.value} (votes {tally}, avg confidence {confidence})"
        logger.info(summary)

        return ConsensusResult(
            verdict=verdict,
            confidence_bps=confidence,
            judges=len(votes),
            tally=tally,
            votes=votes,
            trace=votes[0].raw_trace,
            summary=summary,
        )
