from __future__ import annotations

import json
import logging
import math
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Optional

from jinja2 import Environment, StrictUndefined
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from cache import CacheKind, UserCache, get_cache
from config import get_settings
from models import AIInsight, InsightType, User
from periods import local_today, months_back
from schemas import InsightOut
from services import MetricsService, TransactionService, cents_to_decimal, ledger_transaction
from text_generation import TextGenerationClient, build_client


logger = logging.getLogger(__name__)

MAX_INSIGHTS = 5
MAX_TITLE_LENGTH = 60
MAX_STORED = 10
TOP_CATEGORIES = 8
RECENT_TRANSACTIONS = 10
HISTORY_MONTHS = 3
DEFAULT_CONFIDENCE = 0.7
HIGH_CONFIDENCE = 0.8

_ARRAY_PATTERN = re.compile(r"\[[\s\S]*\]")

_env = Environment(
    autoescape=False,
    trim_blocks=True,
    lstrip_blocks=True,
    undefined=StrictUndefined,
)
_env.filters["dollars"] = lambda cents: str(cents_to_decimal(cents))

PROMPT_TEMPLATE = _env.from_string(
    """Act as a personal finance advisor and analyze the following financial data for {{ first_name or "the user" }}:

FINANCIAL SUMMARY:
- Total Balance: ${{ total_balance_cents|dollars }}
- Monthly Income: ${{ month_income_cents|dollars }}
- Monthly Expenses: ${{ month_expenses_cents|dollars }}
- Monthly Net: ${{ month_net_cents|dollars }}

SPENDING BY CATEGORY (Last {{ history_months }} months):
{% for label, cents in top_categories %}
- {{ label }}: ${{ cents|dollars }}
{% else %}
- No category data available yet
{% endfor %}

RECENT TRANSACTION PATTERNS:
{% for txn in recent %}
- {{ txn.date }}: {{ txn.description }} - ${{ txn.amount_cents|dollars }} ({{ txn.category }})
{% else %}
- No recent transactions available
{% endfor %}

Please provide 3-5 specific, actionable financial insights in JSON format. Each insight should include:
- title: Engaging, specific title (max {{ max_title }} characters)
- content: Detailed actionable advice (100-200 words)
- type: One of [{{ insight_types|join(", ") }}]
- confidence: Number between 0.0-1.0

Focus on:
1. Spending pattern analysis with specific recommendations
2. Budget optimization opportunities
3. Saving potential identification
4. Risk assessment for current financial habits
5. Actionable next steps

Respond ONLY with valid JSON array format:
[{"title": "...", "content": "...", "type": "...", "confidence": 0.85}, ...]
"""
)


class InsightState(str, Enum):
    no_insights = "NO_INSIGHTS"
    generating = "GENERATING"
    ready = "READY"
    failed = "FAILED"


@dataclass(frozen=True)
class InsightDraft:
    title: str
    content: str
    type: InsightType
    confidence: float

    def to_out(self) -> InsightOut:
        return InsightOut(
            id=None,
            title=self.title,
            content=self.content,
            type=self.type,
            confidence=self.confidence,
            is_relevant=True,
            created_at=datetime.utcnow(),
        )


WELCOME_INSIGHT = InsightDraft(
    title="Welcome to AI Financial Insights! 🎉",
    content=(
        "Start adding transactions to receive personalized AI-powered "
        "recommendations about your spending patterns, budgeting opportunities, "
        "and financial goals. Our AI will analyze your data to provide actionable "
        "insights for better financial health."
    ),
    type=InsightType.spending_pattern,
    confidence=1.0,
)

PARSE_FALLBACK_INSIGHT = InsightDraft(
    title="📊 Spending Analysis Available",
    content=(
        "Based on your transaction history, we can see regular spending patterns. "
        "Consider reviewing your monthly expenses and identifying areas where you "
        "might reduce unnecessary spending. Track your progress by setting specific "
        "spending limits for different categories."
    ),
    type=InsightType.spending_pattern,
    confidence=0.8,
)

UNAVAILABLE_INSIGHT = InsightDraft(
    title="AI Analysis Temporarily Unavailable",
    content=(
        "Our AI analysis service encountered an error. Please check the server "
        "logs and try again in a few minutes."
    ),
    type=InsightType.spending_pattern,
    confidence=0.5,
)


@dataclass
class FinancialSnapshot:
    first_name: Optional[str]
    total_balance_cents: int
    month_income_cents: int
    month_expenses_cents: int
    top_categories: list[tuple[str, int]] = field(default_factory=list)
    recent: list[dict[str, object]] = field(default_factory=list)

    @property
    def month_net_cents(self) -> int:
        return self.month_income_cents - self.month_expenses_cents


@dataclass
class InsightRun:
    state: InsightState
    insights: list[InsightOut]
    error: Optional[str] = None


def render_prompt(snapshot: FinancialSnapshot) -> str:
    return PROMPT_TEMPLATE.render(
        first_name=snapshot.first_name,
        total_balance_cents=snapshot.total_balance_cents,
        month_income_cents=snapshot.month_income_cents,
        month_expenses_cents=snapshot.month_expenses_cents,
        month_net_cents=snapshot.month_net_cents,
        history_months=HISTORY_MONTHS,
        top_categories=snapshot.top_categories,
        recent=snapshot.recent,
        max_title=MAX_TITLE_LENGTH,
        insight_types=[t.value for t in InsightType],
    )


def _coerce_confidence(raw: object) -> float:
    if isinstance(raw, bool):
        return DEFAULT_CONFIDENCE
    try:
        value = float(raw) if raw is not None else 0.0
    except (TypeError, ValueError):
        return DEFAULT_CONFIDENCE
    if math.isnan(value) or value == 0.0:
        return DEFAULT_CONFIDENCE
    return min(max(value, 0.0), 1.0)


def _coerce_type(raw: object) -> InsightType:
    try:
        return InsightType(str(raw).strip().upper())
    except ValueError:
        return InsightType.spending_pattern


def _coerce_insight(item: dict) -> InsightDraft:
    title = str(item.get("title") or "").strip() or "Financial Insight"
    content = str(item.get("content") or "").strip() or "No content provided"
    return InsightDraft(
        title=title[:MAX_TITLE_LENGTH],
        content=content,
        type=_coerce_type(item.get("type")),
        confidence=_coerce_confidence(item.get("confidence")),
    )


def parse_insights(text: Optional[str]) -> list[InsightDraft]:
    """
    Pull the insight array out of free-form model output.

    The first ``[`` through the last ``]`` is parsed as JSON; anything
    unusable collapses into the single generic fallback insight.
    """
    match = _ARRAY_PATTERN.search(text or "")
    if not match:
        logger.warning("insight_parse_failed: reason=no_json_array")
        return [PARSE_FALLBACK_INSIGHT]
    try:
        payload = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        logger.warning(f"insight_parse_failed: reason=invalid_json error={exc}")
        return [PARSE_FALLBACK_INSIGHT]
    drafts = [_coerce_insight(item) for item in payload if isinstance(item, dict)]
    if not drafts:
        logger.warning("insight_parse_failed: reason=no_insight_objects")
        return [PARSE_FALLBACK_INSIGHT]
    return drafts[:MAX_INSIGHTS]


def prune_stale_insights(
    session: Session,
    retention_days: int,
    *,
    user_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> int:
    """Delete insights older than the retention window. The caller commits."""
    cutoff = (now or datetime.utcnow()) - timedelta(days=retention_days)
    stmt = delete(AIInsight).where(AIInsight.created_at < cutoff)
    if user_id is not None:
        stmt = stmt.where(AIInsight.user_id == user_id)
    result = session.execute(stmt)
    return result.rowcount or 0


class InsightService:
    def __init__(
        self,
        session: Session,
        user_id: int,
        client: Optional[TextGenerationClient] = None,
        cache: Optional[UserCache] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.client = client if client is not None else build_client()
        self.cache = cache if cache is not None else get_cache()
        self.settings = get_settings()

    def stored(self) -> list[AIInsight]:
        stmt = (
            select(AIInsight)
            .where(AIInsight.user_id == self.user_id, AIInsight.is_relevant.is_(True))
            .order_by(AIInsight.created_at.desc(), AIInsight.id.desc())
            .limit(MAX_STORED)
        )
        return self.session.scalars(stmt).all()

    def snapshot(self, today: Optional[date] = None) -> FinancialSnapshot:
        today = today or local_today()
        user = self.session.get(User, self.user_id)
        metrics = MetricsService(self.session, self.user_id, self.cache)
        stats = metrics.dashboard_stats(today)
        history = months_back(HISTORY_MONTHS, today=today)
        breakdown = metrics.category_breakdown(history.start, history.end, today=today)
        recent = TransactionService(self.session, self.user_id, self.cache).recent(
            RECENT_TRANSACTIONS
        )
        return FinancialSnapshot(
            first_name=user.first_name if user else None,
            total_balance_cents=stats["total_balance_cents"],
            month_income_cents=stats["current_month_income_cents"],
            month_expenses_cents=stats["current_month_expenses_cents"],
            top_categories=[
                (row["label"], row["amount_cents"])
                for row in breakdown["categories"][:TOP_CATEGORIES]
            ],
            recent=[
                {
                    "date": txn.date.isoformat(),
                    "description": txn.description,
                    "amount_cents": txn.amount_cents,
                    "category": txn.category.label,
                }
                for txn in recent
            ],
        )

    def _persist(self, drafts: list[InsightDraft]) -> list[AIInsight]:
        rows = [
            AIInsight(
                user_id=self.user_id,
                title=draft.title,
                content=draft.content,
                type=draft.type,
                confidence=draft.confidence,
                is_relevant=True,
            )
            for draft in drafts
        ]
        with ledger_transaction(self.session):
            pruned = prune_stale_insights(
                self.session, self.settings.insight_retention_days, user_id=self.user_id
            )
            self.session.add_all(rows)
        logger.info(
            f"insights_persisted: user_id={self.user_id} count={len(rows)} pruned={pruned}"
        )
        return rows

    def _remember(self, insights: list[InsightOut]) -> None:
        self.cache.set(
            CacheKind.ai_insights,
            self.user_id,
            [insight.model_dump(mode="json") for insight in insights],
        )

    def regenerate(self, today: Optional[date] = None) -> InsightRun:
        """Run the generation flow. Never raises; the result always carries insights."""
        logger.info(
            f"insight_state: user_id={self.user_id} state={InsightState.generating.value}"
        )
        try:
            if not TransactionService(self.session, self.user_id, self.cache).has_any():
                run = InsightRun(InsightState.no_insights, [WELCOME_INSIGHT.to_out()])
            else:
                prompt = render_prompt(self.snapshot(today))
                result = self.client.generate(prompt)
                if not result.ok:
                    logger.warning(
                        f"insight_generation_failed: user_id={self.user_id} error={result.error}"
                    )
                    run = InsightRun(
                        InsightState.failed,
                        [UNAVAILABLE_INSIGHT.to_out()],
                        error=result.error,
                    )
                else:
                    rows = self._persist(parse_insights(result.text))
                    insights = [InsightOut.model_validate(row) for row in rows]
                    self._remember(insights)
                    run = InsightRun(InsightState.ready, insights)
        except Exception as exc:
            logger.exception(f"insight_flow_error: user_id={self.user_id}")
            self.session.rollback()
            run = InsightRun(
                InsightState.failed, [UNAVAILABLE_INSIGHT.to_out()], error=str(exc)
            )
        logger.info(f"insight_state: user_id={self.user_id} state={run.state.value}")
        return run

    def get_insights(self) -> list[InsightOut]:
        cached = self.cache.get(CacheKind.ai_insights, self.user_id)
        if cached:
            return [InsightOut.model_validate(item) for item in cached]
        rows = self.stored()
        if rows:
            insights = [InsightOut.model_validate(row) for row in rows]
            self._remember(insights)
            return insights
        return self.regenerate().insights

    def summary(self) -> dict[str, object]:
        insights = [InsightOut.model_validate(row) for row in self.stored()]
        total = len(insights)
        types = Counter(insight.type.value for insight in insights)
        return {
            "total_insights": total,
            "high_confidence_insights": sum(
                1 for insight in insights if insight.confidence >= HIGH_CONFIDENCE
            ),
            "insight_types": dict(types),
            "latest_insight": insights[0].model_dump(mode="json") if insights else None,
            "average_confidence": (
                sum(insight.confidence for insight in insights) / total if total else 0.0
            ),
        }
