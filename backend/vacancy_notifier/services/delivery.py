"""Delivery sink: push rendered vacancy notifications over the Telegram Bot API."""

import html
import logging

import httpx

from vacancy_notifier.config import HTTP_TIMEOUT, settings
from vacancy_notifier.core.exceptions import DeliveryError
from vacancy_notifier.schemas.vacancy import Salary, VacancyItem

logger = logging.getLogger(__name__)

CURRENCY_SYMBOLS = {"RUR": "₽", "RUB": "₽", "USD": "$", "EUR": "€"}


class TelegramSink:
    """Sends HTML-formatted messages with ``sendMessage``; returns the message id."""

    def __init__(
        self,
        bot_token: str | None = None,
        base_url: str | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.bot_token = bot_token if bot_token is not None else settings.telegram_bot_token
        self.base_url = (base_url or settings.telegram_api_base_url).rstrip("/")
        self._transport = transport

    async def send(self, subscriber_id: int, content: str) -> int:
        if not self.bot_token:
            raise DeliveryError("telegram bot token is not configured")

        url = f"{self.base_url}/bot{self.bot_token}/sendMessage"
        payload = {
            "chat_id": subscriber_id,
            "text": content,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        try:
            async with httpx.AsyncClient(timeout=HTTP_TIMEOUT, transport=self._transport) as client:
                resp = await client.post(url, json=payload)
        except httpx.HTTPError as e:
            raise DeliveryError(f"telegram request failed: {e}") from e

        if resp.status_code != 200:
            raise DeliveryError(
                f"telegram sendMessage HTTP {resp.status_code}: {resp.text[:300]}",
                resp.status_code,
            )
        try:
            data = resp.json()
        except ValueError as e:
            raise DeliveryError(f"telegram returned a non-JSON body: {resp.text[:300]}") from e
        if not isinstance(data, dict) or not data.get("ok"):
            description = data.get("description", "") if isinstance(data, dict) else ""
            raise DeliveryError(f"telegram rejected message: {description}")
        try:
            return int(data["result"]["message_id"])
        except (KeyError, TypeError, ValueError) as e:
            raise DeliveryError(f"telegram response has no message id: {data}") from e


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def format_salary(salary: Salary | None) -> str:
    if salary is None or (salary.from_ is None and salary.to is None):
        return "not specified"

    currency = CURRENCY_SYMBOLS.get(salary.currency, salary.currency)
    gross = " (gross)" if salary.gross else ""
    if salary.from_ is not None and salary.to is not None:
        return f"{salary.from_:,} - {salary.to:,} {currency}{gross}".replace(",", " ")
    if salary.from_ is not None:
        return f"from {salary.from_:,} {currency}{gross}".replace(",", " ")
    return f"up to {salary.to:,} {currency}{gross}".replace(",", " ")


def _strip_highlight(text: str) -> str:
    return text.replace("<highlighttext>", "").replace("</highlighttext>", "").strip()


def render_vacancy(item: VacancyItem) -> str:
    """One vacancy card as Telegram HTML."""
    esc = html.escape
    lines = [f"<b>{esc(item.name)}</b>", ""]
    if item.employer.name:
        lines.append(f"🏢 <b>Company:</b> {esc(item.employer.name)}")
    lines.append(f"💰 <b>Salary:</b> {esc(format_salary(item.salary))}")
    if item.area.name:
        lines.append(f"📍 <b>City:</b> {esc(item.area.name)}")
    if item.experience:
        lines.append(f"💼 <b>Experience:</b> {esc(item.experience.name)}")
    if item.schedule:
        lines.append(f"⏰ <b>Schedule:</b> {esc(item.schedule.name)}")
    if item.snippet and item.snippet.requirement:
        requirement = _strip_highlight(item.snippet.requirement)
        if requirement:
            lines.append(f"🗣️ <b>Requirements:</b> {esc(requirement)}")
    if item.published_at:
        lines.append(f"📅 <b>Published:</b> {item.published_at:%d.%m.%Y}")
    if item.alternate_url:
        lines.append("")
        lines.append(f'🔗 <a href="{esc(item.alternate_url, quote=True)}">Open vacancy</a>')
    return "\n".join(lines)


def render_summary(count: int) -> str:
    return f"🔔 <b>New vacancies!</b>\n\nNew vacancies found: {count}"
