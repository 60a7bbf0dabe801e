# services/notifications.py
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from aiogram import Bot

from config import BOT_TOKEN, ADMIN_CHAT_ID
from services.clock import localize

EVENT_CREATED = "created"
EVENT_CONFIRMED = "confirmed"
EVENT_CANCELLED = "cancelled"
EVENT_RESCHEDULED = "rescheduled"
EVENT_REMINDER = "reminder"

TEMPLATES = {
    EVENT_CREATED: "🆕 Новая запись #{appointment_id}\n{service} у мастера {master}\n🗓 {start}",
    EVENT_CONFIRMED: "✅ Запись #{appointment_id} подтверждена\n{service} у мастера {master}\n🗓 {start}",
    EVENT_CANCELLED: "❌ Запись #{appointment_id} отменена\n{service}, {start}\nПричина: {reason}",
    EVENT_RESCHEDULED: "🔄 Запись #{appointment_id} перенесена\n{service} у мастера {master}\n🗓 {old_start} → {start}",
    EVENT_REMINDER: "⏰ Напоминание: через {hours} ч. у вас запись #{appointment_id}\n{service} у мастера {master}\n🗓 {start}",
}


@dataclass
class NotificationEvent:
    """Событие жизненного цикла записи для одного получателя.

    Хранит только простые данные: ORM-объекты после ответа уже отвязаны от сессии.
    """
    appointment_id: int
    event_type: str
    recipient_id: int
    payload: dict = field(default_factory=dict)


def _fmt(value) -> str:
    return localize(value).strftime("%d.%m.%Y %H:%M") if value else "-"


def render_message(event: NotificationEvent) -> str:
    p = event.payload
    return TEMPLATES[event.event_type].format(
        appointment_id=event.appointment_id,
        service=p.get("service", ""),
        master=p.get("master", ""),
        start=_fmt(p.get("start_time")),
        old_start=_fmt(p.get("old_start_time")),
        reason=p.get("reason") or "не указана",
        hours=p.get("reminder_hours", ""),
    )


def build_events(appointment, event_type: str, reason: Optional[str] = None,
                 old_start_time=None, reminder_hours: Optional[int] = None) -> List[NotificationEvent]:
    """Раскладывает событие по получателям: клиент, мастер, чат администраторов.

    Напоминание уходит только клиенту.
    """
    payload = {
        "service": appointment.service.name if appointment.service else "",
        "master": appointment.master.name if appointment.master else "",
        "start_time": appointment.start_time,
        "old_start_time": old_start_time,
        "reason": reason,
        "status": appointment.status,
        "reminder_hours": reminder_hours,
    }
    recipients = []
    client = appointment.client
    # Отрицательные id у клиентов, заведенных вручную, в Telegram им не написать
    if client is not None and client.telegram_user_id and client.telegram_user_id > 0:
        recipients.append(client.telegram_user_id)
    if event_type != EVENT_REMINDER:
        if appointment.master is not None and appointment.master.telegram_chat_id:
            recipients.append(appointment.master.telegram_chat_id)
        if ADMIN_CHAT_ID:
            recipients.append(int(ADMIN_CHAT_ID))

    events = []
    for recipient_id in dict.fromkeys(recipients):
        events.append(NotificationEvent(appointment.id, event_type, recipient_id, dict(payload)))
    return events


class TelegramSender:
    def __init__(self, token: Optional[str] = BOT_TOKEN):
        self.token = token

    async def send(self, event: NotificationEvent) -> bool:
        if not self.token:
            logging.warning(f"BOT_TOKEN не задан, уведомление '{event.event_type}' по записи #{event.appointment_id} пропущено")
            return False
        bot = Bot(token=self.token)
        try:
            await bot.send_message(chat_id=event.recipient_id, text=render_message(event))
        finally:
            await bot.session.close()
        return True


async def deliver(sender, event: NotificationEvent) -> None:
    try:
        await sender.send(event)
    except Exception as e:
        logging.error(f"Не удалось отправить уведомление '{event.event_type}' получателю {event.recipient_id} "
                      f"по записи #{event.appointment_id}: {e}", exc_info=True)


class NotificationDispatcher:
    """Fire-and-forget: dispatch() только ставит доставку в очередь и не бросает исключений.

    С фоновыми задачами FastAPI отправка идет уже после ответа клиенту.
    Все события дополнительно сохраняются в `events`.
    """

    def __init__(self, background_tasks=None, sender=None):
        self.background_tasks = background_tasks
        self.sender = sender or TelegramSender()
        self.events: List[NotificationEvent] = []

    def dispatch(self, event: NotificationEvent) -> None:
        try:
            self.events.append(event)
            if self.background_tasks is not None:
                self.background_tasks.add_task(deliver, self.sender, event)
        except Exception as e:
            logging.error(f"Ошибка постановки уведомления в очередь: {e}", exc_info=True)

    def dispatch_all(self, events: List[NotificationEvent]) -> None:
        for event in events:
            self.dispatch(event)
