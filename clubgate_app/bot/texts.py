# clubgate_app/bot/texts.py
# -*- coding: utf-8 -*-
"""User-facing messages (HTML parse mode)."""
from __future__ import annotations

from html import escape

from ..models.payment import (
    ACCESS_ALREADY_MEMBER,
    ACCESS_GRANTED,
    ACCESS_GRANTED_NO_LINK,
    ACCESS_OWNER,
    CRYPTO_INVOICE,
    RECURRING_SUBSCRIPTION,
    REDIRECT_CARD,
)

METHOD_LABELS = {
    REDIRECT_CARD: "💳 Банковская карта",
    RECURRING_SUBSCRIPTION: "🔁 Карта с автопродлением",
    CRYPTO_INVOICE: "🪙 Криптовалюта",
}

GENERIC_ERROR = "⚠️ Произошла ошибка. Попробуйте позже."
NO_ACCESS = "⛔ Нет доступа"
PAYMENT_NOT_FOUND = "⚠️ Платеж не найден"
OFFER_UNAVAILABLE = "⚠️ Оферта временно недоступна"
CREATING_PAYMENT = "🔄 <b>Создаем платеж...</b>"
PAYMENT_CREATE_FAILED = "⚠️ <b>Ошибка при создании платежа</b>\n\nПопробуйте позже или выберите другой способ оплаты."
ASK_EMAIL = "📧 Укажите e-mail для отправки чека.\n\nПросто отправьте адрес ответным сообщением."
BAD_EMAIL = "❌ Это не похоже на e-mail. Попробуйте еще раз."
CONVERSATION_EXPIRED = "⌛ Время ожидания истекло. Начните заново: /start"
ADMIN_ASK_USER = "Введите ID пользователя для проверки.\n\n⬅️ Нажмите «Назад» чтобы вернуться."
ADMIN_USER_NOT_FOUND = "❌ Пользователь не найден"
ADMIN_EXIT = "✅ Вы вышли из админки"
ADMIN_WELCOME = "⚙️ Добро пожаловать в панель администратора!"
ADMIN_PANEL = "⚙️ Панель администратора"
NO_SUBSCRIPTION = "❌ У вас нет активной подписки"

ALREADY_MEMBER = (
    "✅ <b>Вы уже имеете доступ к нашему сообществу!</b>\n\n"
    "Если у вас возникли проблемы с доступом, обратитесь в техподдержку."
)

PAYMENT_CANCELLED = (
    "🗑 <b>Платеж отменен</b>\n\n"
    "Вы можете оформить подписку в любое время, воспользовавшись командой /start"
)

PAYMENT_PENDING = (
    "⏳ <b>Оплата еще не поступила</b>\n\n"
    "Если вы уже оплатили, подождите пару минут и проверьте снова."
)

PAYMENT_NOT_CONFIRMED = (
    "📝 <b>Платеж еще не создан</b>\n\n"
    "Нажмите «Подтвердить оплату», чтобы получить ссылку на оплату."
)

PAYMENT_FAILED = (
    "❌ <b>Платеж отклонен</b>\n\n"
    "Попробуйте еще раз или выберите другой способ оплаты через /start"
)

PROVIDER_UNAVAILABLE = (
    "⏳ Платежная система временно недоступна. Ваш платеж сохранен, проверьте его чуть позже."
)

PAYMENT_EXPIRED = (
    "⌛ <b>Срок оплаты истек</b>\n\n"
    "Счет больше не действителен. Оформите новый через /start"
)

ACCESS_FAILED = (
    "✅ <b>Оплата получена</b>, но выдать доступ автоматически не удалось.\n\n"
    "Мы уже знаем о проблеме. Напишите в техподдержку, и мы откроем доступ вручную."
)

RENEWAL_FAILED = (
    "⚠️ <b>Не удалось продлить подписку</b>\n\n"
    "Автоматическое списание не прошло. Чтобы сохранить доступ, оплатите подписку вручную через /start"
)


def welcome(price: str, currency: str) -> str:
    return (
        "🎉 <b>Добро пожаловать в наше эксклюзивное сообщество!</b>\n\n"
        "Для доступа к закрытому контенту оформите подписку на 1 месяц.\n\n"
        f"Стоимость подписки: <b>{escape(price)} {escape(currency)}</b>\n\n"
        "Выберите способ оплаты. Продолжая, вы соглашаетесь с офертой."
    )


def payment_summary(method: str, price: str, currency: str) -> str:
    renew = "Доступно" if method in (RECURRING_SUBSCRIPTION, REDIRECT_CARD) else "Недоступно"
    return (
        f"🔒 <b>{escape(METHOD_LABELS.get(method, method))}</b>\n\n"
        "Вы оформляете подписку на наше сообщество:\n"
        f"▫️ Сумма: <b>{escape(price)} {escape(currency)}</b>\n"
        "▫️ Срок: <b>1 месяц</b>\n"
        f"▫️ Автопродление: <b>{renew}</b>\n\n"
        "Для продолжения подтвердите платеж:"
    )


PAYMENT_LINK = (
    "🔗 <b>Перейдите на страницу оплаты</b>\n\n"
    "После успешной оплаты вы автоматически получите доступ к сообществу."
)

PAYMENT_CONFIRMED = "✅ <b>Оплата подтверждена</b>\n\nСообщение с доступом отправлено вам в этот чат."


def access_message(kind: str, invite_link: str | None = None) -> str:
    if kind == ACCESS_GRANTED and invite_link:
        return (
            "🎉 <b>Оплата прошла успешно!</b>\n\n"
            f"Добро пожаловать в наше сообщество! Ссылка для входа (одноразовая): {escape(invite_link)}"
        )
    if kind == ACCESS_GRANTED_NO_LINK:
        return "🎉 <b>Оплата прошла успешно!</b>\n\nДоступ к сообществу восстановлен."
    if kind in (ACCESS_ALREADY_MEMBER, ACCESS_OWNER):
        return "🎉 <b>Оплата прошла успешно!</b>\n\nПодписка продлена, доступ к сообществу сохранен."
    return ACCESS_FAILED


def subscription_info(sub, now) -> str:
    until = sub.current_period_end.strftime("%d.%m.%Y") if sub.current_period_end else "-"
    renew = "включено" if sub.auto_renew else "выключено"
    text = (
        "📌 <b>Информация о подписке</b>\n"
        f"Статус: {escape(sub.status)}\n"
        f"Действует до: {until}\n"
        f"Автопродление: {renew}"
    )
    if not sub.is_current(now):
        text += "\n\n⏳ Оплаченный период закончился."
    return text


def admin_stats(stats: dict) -> str:
    return (
        "📊 <b>Статистика</b>\n"
        f"👥 Пользователей: {stats['users']}\n"
        f"💳 Платежей: {stats['payments']}\n"
        f"✅ Оплачено: {stats['completed']}\n"
        f"📌 Активных подписок: {stats['active_subscriptions']}\n"
        f"⚠️ Просрочено: {stats['past_due_subscriptions']}"
    )


def admin_payment_line(p) -> str:
    who = f"@{p.username}" if p.username else str(p.user_id)
    return f"<code>{p.user_id}</code> {escape(who)} | {escape(p.payment_method)} | {escape(p.status)} | {p.created_at:%d.%m %H:%M}"


def admin_user_card(payment, sub) -> str:
    name = " ".join(x for x in (payment.first_name, payment.last_name) if x) or "-"
    lines = [
        "👤 <b>Информация о пользователе</b>",
        f"ID: <code>{payment.user_id}</code>",
        f"Username: @{escape(payment.username or '-')}",
        f"Имя: {escape(name)}",
        f"Последний платеж: <code>{escape(payment.id)}</code> ({escape(payment.status)})",
        f"Доступ: {escape(payment.access_status or '-')}",
    ]
    if payment.access_error:
        lines.append(f"Ошибка доступа: {escape(payment.access_error)}")
    if sub is not None:
        until = sub.current_period_end.strftime("%d.%m.%Y") if sub.current_period_end else "-"
        lines.append(f"Подписка: {escape(sub.status)} до {until}")
    return "\n".join(lines)


def admin_regrant_result(user_id: int, kind: str, reason: str | None = None) -> str:
    text = f"🔑 Повторная выдача доступа для <code>{user_id}</code>: {escape(kind)}"
    if reason:
        text += f"\nОшибка: {escape(reason)}"
    return text
