"""
Chat orchestration: turns Telegram updates and Gmail push notifications into
mailbox calls and chat replies.

The bot is stateless between requests. Everything it needs to resolve a
button tap later (which message "3" was, where the next page starts, which
message the detail view shows) goes through ``CorrelationStore`` and expires
on its own. Credentials are only ever obtained through ``CredentialLifecycle``
so an unusable one is cleaned up and reported the same way everywhere.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from googleapiclient.errors import HttpError

from commands import (
    LABEL_CHANGES,
    Callback,
    CallbackKind,
    Command,
    MessageAction,
    parse_callback,
    parse_search,
    parse_text_command,
)
from content_pipeline import RenderMode, list_attachments, render
from correlation_store import CorrelationStore, PushSubscription
from credentials import CredentialLifecycle, Refresher, StoredCredential, google_refresher
from gmail_gateway import MailboxGateway, http_error_detail, parse_gmail_push_data
from kv_store import BaseKeyValueStore, get_kv_store
from message_views import (
    MessageSummary,
    View,
    accounts_view,
    delete_menu_view,
    detail_view,
    empty_list_view,
    expiry_notice_view,
    failure_view,
    fetch_failed_view,
    header_value,
    linked_view,
    list_view,
    login_unavailable_view,
    login_view,
    mark_all_read_view,
    new_mail_view,
    no_account_view,
    parse_sender,
    resolve_timezone,
    search_help_view,
    settings_view,
    stats_view,
    today_timestamp,
    trashed_view,
    welcome_view,
)
from oauth_flow import (
    OAuthExchangeError,
    build_authorization_url,
    decode_state,
    encode_state,
    exchange_code,
    redirect_uri_for,
)
from settings import Settings, load_settings
from telegram_client import TelegramClient, TelegramError

logger = logging.getLogger(__name__)

DEFAULT_QUERY = "in:inbox"
MARK_ALL_READ_LIMIT = 100
PUSH_METADATA_HEADERS = ["From", "Subject"]

GatewayFactory = Callable[[str], MailboxGateway]


class AuthorizationError(Exception):
    """The OAuth callback could not link an account; ``reason`` is shown to the user."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class PreviewUnavailable(Exception):
    def __init__(self, status_code: int, reason: str) -> None:
        super().__init__(reason)
        self.status_code = status_code
        self.reason = reason


@dataclass
class ChatContext:
    chat_id: Any
    user_id: str
    # Set when the reply should replace the message that carried the tapped button.
    message_id: Optional[int] = None


class GmailBot:
    def __init__(
        self,
        settings: Settings,
        store: CorrelationStore,
        telegram: TelegramClient,
        *,
        refresher: Optional[Refresher] = None,
        gateway_factory: GatewayFactory = MailboxGateway.for_token,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.store = store
        self.telegram = telegram
        self.gateway_factory = gateway_factory
        self.clock = clock
        self.tz = resolve_timezone(settings.timezone)
        self.credentials = CredentialLifecycle(
            store,
            refresher=refresher or google_refresher(settings.google_client_id, settings.google_client_secret),
            notifier=self.send_expiry_notice,
            clock=clock,
        )
        self._callback_handlers: Dict[CallbackKind, Callable[[ChatContext, Callback], None]] = {
            CallbackKind.STATS_REFRESH: lambda ctx, cb: self.show_stats(ctx),
            CallbackKind.ACCOUNTS_REFRESH: lambda ctx, cb: self.show_accounts(ctx),
            CallbackKind.ADD_ACCOUNT: lambda ctx, cb: self.send_login_link(_fresh(ctx)),
            CallbackKind.SWITCH_ACCOUNT: self._switch_account,
            CallbackKind.DELETE_MENU: lambda ctx, cb: self.show_delete_menu(ctx),
            CallbackKind.DELETE_ACCOUNT: self._delete_account,
            CallbackKind.SEARCH_HELP: lambda ctx, cb: self._reply(_fresh(ctx), search_help_view()),
            CallbackKind.LIST: lambda ctx, cb: self.show_mail_list(ctx, cb.argument),
            CallbackKind.REFRESH: lambda ctx, cb: self.show_mail_list(ctx, cb.argument),
            CallbackKind.PAGE: self._next_page,
            CallbackKind.OPEN_MESSAGE: self._open_message,
            CallbackKind.MESSAGE_ACTION: lambda ctx, cb: self.perform_action(ctx, cb.action),
            CallbackKind.SEARCH_SENDER: lambda ctx, cb: self.show_mail_list(ctx, f"from:{cb.argument}"),
            CallbackKind.ATTACHMENT: lambda ctx, cb: self.send_attachment(ctx, cb.index),
            CallbackKind.BACK: lambda ctx, cb: self.show_mail_list(ctx, self.store.get_last_query(ctx.user_id) or DEFAULT_QUERY),
            CallbackKind.READ_ALL: lambda ctx, cb: self.mark_all_read(_fresh(ctx)),
            CallbackKind.PUSH: lambda ctx, cb: self.set_push(ctx, cb.enable),
        }

    # ---------- Plumbing ----------
    def base_url(self) -> Optional[str]:
        return self.settings.public_base_url or self.store.get_origin()

    def _reply(self, ctx: ChatContext, view: View) -> None:
        text, markup = view
        if ctx.message_id is not None:
            self.telegram.edit_message_text(ctx.chat_id, ctx.message_id, text, parse_mode="HTML", reply_markup=markup)
        else:
            self.telegram.send_message(ctx.chat_id, text, parse_mode="HTML", reply_markup=markup)

    def _mailbox(self, ctx: ChatContext) -> Optional[Tuple[StoredCredential, MailboxGateway]]:
        credential = self.credentials.get_valid_credential(ctx.user_id)
        if credential is None:
            self._reply(_fresh(ctx), no_account_view())
            return None
        return credential, self.gateway_factory(credential.access_token)

    def _preview_url(self, user_id: str, message_id: str, account: str) -> Optional[str]:
        base = self.base_url()
        if not base:
            return None
        token = self.store.issue_preview_token(user_id, message_id, account)
        return f"{base}/mail/{token}"

    def send_expiry_notice(self, user_id: str, account: str) -> None:
        text, markup = expiry_notice_view(account)
        self.telegram.send_message(user_id, text, parse_mode="HTML", reply_markup=markup)

    # ---------- Updates ----------
    def handle_update(self, update: Dict[str, Any], *, origin: Optional[str] = None) -> None:
        """Process one Telegram update; failures are logged and answered with a generic message."""
        if origin:
            self.store.set_origin(origin.rstrip("/"))

        callback_query = update.get("callback_query")
        message = update.get("message") or {}
        if callback_query:
            carrier = callback_query.get("message") or {}
            ctx = _context_from(carrier, callback_query.get("from") or {})
            if ctx is not None:
                ctx.message_id = carrier.get("message_id")
        elif isinstance(message.get("text"), str):
            ctx = _context_from(message, message.get("from") or {})
        else:
            logger.debug("Ignoring update %s without text or callback", update.get("update_id"))
            return
        if ctx is None:
            logger.warning("Ignoring update %s without chat or sender", update.get("update_id"))
            return

        try:
            if callback_query:
                self.handle_callback(ctx, callback_query)
            else:
                self.handle_message(ctx, message["text"])
        except (TelegramError, HttpError) as exc:
            detail = http_error_detail(exc) if isinstance(exc, HttpError) else str(exc)
            logger.error("Update %s for user %s failed: %s", update.get("update_id"), ctx.user_id, detail)
            self._report_failure(ctx)
        except Exception:  # noqa: BLE001 - every failed update still gets an answer
            logger.exception("Unexpected error handling update %s for user %s", update.get("update_id"), ctx.user_id)
            self._report_failure(ctx)

    def _report_failure(self, ctx: ChatContext) -> None:
        try:
            self._reply(_fresh(ctx), failure_view())
        except TelegramError as exc:
            logger.warning("Could not report failure to %s: %s", ctx.user_id, exc)

    def handle_message(self, ctx: ChatContext, text: str) -> None:
        command = parse_text_command(text)
        if command is not None:
            self.run_command(ctx, command)
            return
        query = parse_search(text)
        if query is not None:
            if query:
                self.show_mail_list(ctx, query)
            return
        self.show_welcome(ctx)

    def run_command(self, ctx: ChatContext, command: Command) -> None:
        if command is Command.START:
            self.show_welcome(ctx)
        elif command is Command.INBOX:
            self.show_mail_list(ctx, DEFAULT_QUERY)
        elif command is Command.TODAY:
            self.show_mail_list(ctx, self.today_query())
        elif command is Command.STARRED:
            self.show_mail_list(ctx, "is:starred")
        elif command is Command.SEARCH_HELP:
            self._reply(ctx, search_help_view())
        elif command is Command.STATS:
            self.show_stats(ctx)
        elif command is Command.MARK_ALL_READ:
            self.mark_all_read(ctx)
        elif command is Command.ACCOUNTS:
            self.show_accounts(ctx)
        elif command is Command.SETTINGS:
            self.show_settings(ctx)

    def handle_callback(self, ctx: ChatContext, callback_query: Dict[str, Any]) -> None:
        try:
            self.telegram.answer_callback_query(str(callback_query.get("id") or ""))
        except (TelegramError, ValueError) as exc:
            # Stale queries cannot be answered; the tap itself is still valid.
            logger.debug("answerCallbackQuery failed: %s", exc)

        callback = parse_callback(callback_query.get("data"))
        if callback is None:
            logger.info("Ignoring unknown callback data %r from %s", callback_query.get("data"), ctx.user_id)
            return
        self._callback_handlers[callback.kind](ctx, callback)

    # ---------- Views ----------
    def today_query(self) -> str:
        return f"after:{today_timestamp(self.tz, self.clock())}"

    def show_welcome(self, ctx: ChatContext) -> None:
        accounts = self.credentials.accounts(ctx.user_id)
        active = self.credentials.active_account(ctx.user_id)
        self._reply(_fresh(ctx), welcome_view(accounts, active))

    def show_mail_list(self, ctx: ChatContext, query: str, page_token: Optional[str] = None) -> None:
        mailbox = self._mailbox(ctx)
        if mailbox is None:
            return
        _, gateway = mailbox
        self.store.put_last_query(ctx.user_id, query)

        listing = gateway.list_messages(query, max_results=self.settings.page_size, page_token=page_token)
        message_ids = [str(item["id"]) for item in listing.get("messages") or [] if item.get("id")]
        if not message_ids:
            self._reply(ctx, empty_list_view(query))
            return

        summaries = []
        for message_id in message_ids:
            metadata = gateway.get_message(message_id, format_="metadata")
            summary = MessageSummary.from_metadata(metadata, self.tz)
            summary.message_id = message_id
            summaries.append(summary)
        self.store.put_index_map(ctx.user_id, message_ids)

        next_page_key = None
        if listing.get("nextPageToken"):
            next_page_key = self.store.put_page_cursor(ctx.user_id, query, listing["nextPageToken"])
        self._reply(ctx, list_view(query, summaries, next_page_key))

    def _next_page(self, ctx: ChatContext, callback: Callback) -> None:
        cursor = self.store.get_page_cursor(ctx.user_id, callback.argument)
        if cursor is None:
            logger.info("Page cursor %s for %s expired", callback.argument, ctx.user_id)
            return
        self.show_mail_list(ctx, cursor.query, cursor.token)

    def _open_message(self, ctx: ChatContext, callback: Callback) -> None:
        message_id = self.store.get_indexed_message(ctx.user_id, callback.index)
        if message_id is None:
            logger.info("No list entry %s for %s", callback.index, ctx.user_id)
            return
        self.show_message(ctx, message_id, RenderMode.PREVIEW)

    def show_message(self, ctx: ChatContext, message_id: str, mode: RenderMode) -> None:
        mailbox = self._mailbox(ctx)
        if mailbox is None:
            return
        credential, gateway = mailbox
        try:
            message = gateway.get_message(message_id, format_="full")
        except HttpError as exc:
            logger.warning("Could not fetch message %s: %s", message_id, http_error_detail(exc))
            self._reply(ctx, fetch_failed_view())
            return

        max_length = self.settings.max_content_length if mode is RenderMode.FULL else self.settings.preview_length
        payload = message.get("payload")
        body = render(payload, max_length, mode)
        self.store.set_current_message(ctx.user_id, message_id)
        view = detail_view(
            message,
            body=body,
            attachments=list_attachments(payload),
            mode=mode,
            preview_url=self._preview_url(ctx.user_id, message_id, credential.account),
            tz=self.tz,
        )
        self._reply(ctx, view)

    def perform_action(self, ctx: ChatContext, action: MessageAction) -> None:
        message_id = self.store.get_current_message(ctx.user_id)
        if message_id is None:
            logger.info("No current message for %s; ignoring %s", ctx.user_id, action.value)
            return
        if action is MessageAction.FULL:
            self.show_message(ctx, message_id, RenderMode.FULL)
            return

        mailbox = self._mailbox(ctx)
        if mailbox is None:
            return
        _, gateway = mailbox
        if action is MessageAction.DELETE:
            gateway.trash(message_id)
            self._reply(ctx, trashed_view())
            return
        gateway.modify(message_id, **LABEL_CHANGES[action])
        self.show_message(ctx, message_id, RenderMode.PREVIEW)

    def send_attachment(self, ctx: ChatContext, index: int) -> None:
        message_id = self.store.get_current_message(ctx.user_id)
        if message_id is None:
            return
        mailbox = self._mailbox(ctx)
        if mailbox is None:
            return
        _, gateway = mailbox
        message = gateway.get_message(message_id, format_="full")
        attachments = list_attachments(message.get("payload"))
        if index >= len(attachments):
            logger.info("Attachment %s no longer present on %s", index, message_id)
            return
        attachment = attachments[index]
        content = gateway.get_attachment(message_id, attachment.attachment_id)
        self.telegram.send_document(ctx.chat_id, attachment.name, content)

    def show_stats(self, ctx: ChatContext) -> None:
        mailbox = self._mailbox(ctx)
        if mailbox is None:
            return
        credential, gateway = mailbox
        today_query = self.today_query()
        profile = gateway.get_profile()
        view = stats_view(
            profile.get("emailAddress") or credential.account,
            unread=gateway.result_size_estimate("is:unread"),
            today=gateway.result_size_estimate(today_query),
            starred=gateway.result_size_estimate("is:starred"),
            total=int(profile.get("messagesTotal") or 0),
            today_query=today_query,
        )
        self._reply(ctx, view)

    def mark_all_read(self, ctx: ChatContext) -> None:
        mailbox = self._mailbox(ctx)
        if mailbox is None:
            return
        _, gateway = mailbox
        listing = gateway.list_messages("is:unread", max_results=MARK_ALL_READ_LIMIT)
        message_ids = [str(item["id"]) for item in listing.get("messages") or [] if item.get("id")]
        gateway.batch_modify(message_ids, remove_label_ids=["UNREAD"])
        self._reply(_fresh(ctx), mark_all_read_view(len(message_ids)))

    # ---------- Accounts ----------
    def show_accounts(self, ctx: ChatContext) -> None:
        accounts = self.credentials.accounts(ctx.user_id)
        # Switch buttons carry an index; resolve it later against this exact list.
        self.store.put_account_index(ctx.user_id, accounts)
        self._reply(ctx, accounts_view(accounts, self.credentials.active_account(ctx.user_id)))

    def show_delete_menu(self, ctx: ChatContext) -> None:
        accounts = self.credentials.accounts(ctx.user_id)
        self.store.put_account_index(ctx.user_id, accounts)
        self._reply(ctx, delete_menu_view(accounts))

    def _switch_account(self, ctx: ChatContext, callback: Callback) -> None:
        account = self.store.get_indexed_account(ctx.user_id, callback.index)
        if account and not self.credentials.switch_active(ctx.user_id, account):
            logger.info("Account %s is no longer linked for %s", account, ctx.user_id)
        self.show_accounts(ctx)

    def _delete_account(self, ctx: ChatContext, callback: Callback) -> None:
        account = self.store.get_indexed_account(ctx.user_id, callback.index)
        if account:
            self.credentials.unlink(ctx.user_id, account)
            logger.info("User %s removed %s", ctx.user_id, account)
        self.show_accounts(ctx)

    def show_settings(self, ctx: ChatContext) -> None:
        active = self.credentials.active_account(ctx.user_id)
        subscription = self.store.get_push_subscription(ctx.user_id, active) if active else None
        enabled = bool(subscription and subscription.enabled)
        self._reply(ctx, settings_view(active, enabled, bool(self.settings.pubsub_topic)))

    def set_push(self, ctx: ChatContext, enable: bool) -> None:
        active = self.credentials.active_account(ctx.user_id)
        if not active:
            return
        if enable and self.settings.pubsub_topic:
            mailbox = self._mailbox(ctx)
            if mailbox is None:
                return
            credential, gateway = mailbox
            response = gateway.start_watch(self.settings.pubsub_topic)
            self.store.put_push_subscription(
                ctx.user_id,
                credential.account,
                PushSubscription(
                    enabled=True,
                    history_id=_optional_str(response.get("historyId")),
                    expiration=_optional_str(response.get("expiration")),
                ),
            )
            logger.info("Push enabled for %s (user %s)", credential.account, ctx.user_id)
        elif not enable:
            self.store.put_push_subscription(ctx.user_id, active, PushSubscription(enabled=False))
            logger.info("Push disabled for %s (user %s)", active, ctx.user_id)
        self.show_settings(ctx)

    # ---------- OAuth ----------
    def send_login_link(self, ctx: ChatContext) -> None:
        base = self.base_url()
        if not (base and self.settings.oauth_configured):
            logger.warning("Cannot build a login link: base URL or OAuth client missing")
            self._reply(ctx, login_unavailable_view())
            return
        nonce = self.store.issue_nonce(ctx.user_id)
        url = build_authorization_url(self.settings, redirect_uri_for(base), encode_state(ctx.user_id, nonce))
        self._reply(ctx, login_view(url))

    def complete_authorization(
        self,
        *,
        state: Optional[str],
        code: Optional[str],
        error: Optional[str] = None,
        base_url: Optional[str] = None,
    ) -> str:
        """Redeem an authorization code and link the mailbox; returns the linked address."""
        if error:
            raise AuthorizationError(error)
        if not code or not state:
            raise AuthorizationError("Missing parameters.")
        auth_state = decode_state(state)
        if auth_state is None:
            raise AuthorizationError("Invalid state.")
        if not self.store.nonce_matches(auth_state.user_id, auth_state.nonce):
            raise AuthorizationError("This link has expired. Start again from the bot.")

        base = self.base_url() or base_url
        if not base:
            raise AuthorizationError("Public URL is not configured.")
        try:
            grant = exchange_code(self.settings, code, redirect_uri_for(base))
        except OAuthExchangeError as exc:
            logger.warning("Code exchange failed for user %s: %s", auth_state.user_id, exc)
            raise AuthorizationError(str(exc)) from exc
        try:
            profile = self.gateway_factory(grant.access_token).get_profile()
        except HttpError as exc:
            logger.warning("Profile lookup failed for user %s: %s", auth_state.user_id, http_error_detail(exc))
            raise AuthorizationError("Could not read the Gmail profile.") from exc
        account = profile.get("emailAddress")
        if not account:
            raise AuthorizationError("Gmail did not report an address for this account.")

        self.credentials.link_account(auth_state.user_id, account, grant)
        self.store.discard_nonce(auth_state.user_id)
        text, markup = linked_view(account)
        try:
            self.telegram.send_message(auth_state.user_id, text, parse_mode="HTML", reply_markup=markup)
        except TelegramError as exc:
            logger.warning("Linked %s but could not notify %s: %s", account, auth_state.user_id, exc)
        return account

    # ---------- Browser preview ----------
    def resolve_preview(self, token: str) -> Dict[str, Any]:
        """Return the full Gmail message a preview token grants, or raise ``PreviewUnavailable``."""
        grant = self.store.get_preview_grant(token)
        if grant is None:
            raise PreviewUnavailable(404, "Preview link expired.")
        if grant.account not in self.credentials.accounts(grant.user_id):
            raise PreviewUnavailable(401, "Account is no longer linked.")
        credential = self.credentials.get_account_credential(grant.user_id, grant.account)
        if credential is None:
            raise PreviewUnavailable(401, "Authorization expired.")
        try:
            return self.gateway_factory(credential.access_token).get_message(grant.message_id, format_="full")
        except HttpError as exc:
            logger.warning("Preview fetch of %s failed: %s", grant.message_id, http_error_detail(exc))
            raise PreviewUnavailable(404, "Message not available.") from exc

    # ---------- Push ----------
    def handle_push(self, envelope: Dict[str, Any]) -> int:
        """Deliver one notice per message added since the last push; returns how many were sent."""
        notification = parse_gmail_push_data(envelope.get("message") or {})
        if not notification:
            logger.debug("Ignoring Pub/Sub message without a Gmail payload")
            return 0
        address = notification["emailAddress"]
        notified_history_id = _optional_str(notification.get("historyId"))

        delivered = 0
        for user_id, account, subscription in list(self.store.iter_push_subscriptions()):
            if not subscription.enabled or account != address:
                continue
            try:
                delivered += self._deliver_new_mail(user_id, account, subscription, notified_history_id)
            except Exception as exc:  # noqa: BLE001 - one subscriber must not block the others
                logger.error("Push delivery for %s (user %s) failed: %s", account, user_id, exc)
        return delivered

    def _deliver_new_mail(
        self,
        user_id: str,
        account: str,
        subscription: PushSubscription,
        notified_history_id: Optional[str],
    ) -> int:
        credential = self.credentials.get_account_credential(user_id, account)
        if credential is None:
            return 0
        start_history_id = subscription.history_id or notified_history_id
        if not start_history_id:
            return 0
        gateway = self.gateway_factory(credential.access_token)
        try:
            history = gateway.fetch_history(start_history_id)
        except HttpError as exc:
            if getattr(exc.resp, "status", None) == 404 and notified_history_id:
                # Stored history id fell out of Gmail's retention window; resume from now.
                logger.warning("History %s too old for %s; resetting", start_history_id, account)
                subscription.history_id = notified_history_id
                self.store.put_push_subscription(user_id, account, subscription)
                return 0
            raise

        delivered = 0
        for record in history.get("history") or []:
            for added in record.get("messagesAdded") or []:
                message_id = (added.get("message") or {}).get("id")
                if not message_id:
                    continue
                metadata = gateway.get_message(
                    message_id, format_="metadata", metadata_headers=PUSH_METADATA_HEADERS
                )
                sender = parse_sender(header_value(metadata, "From")).name
                subject = header_value(metadata, "Subject")
                self.credentials.switch_active(user_id, account)
                self.store.set_current_message(user_id, message_id)
                text, markup = new_mail_view(account, sender, subject, self._preview_url(user_id, message_id, account))
                self.telegram.send_message(user_id, text, parse_mode="HTML", reply_markup=markup)
                delivered += 1

        subscription.history_id = _optional_str(history.get("historyId")) or notified_history_id or subscription.history_id
        self.store.put_push_subscription(user_id, account, subscription)
        return delivered

    def renew_watches(self) -> Dict[str, int]:
        """Re-register the Gmail watch of every enabled subscription."""
        summary = {"renewed": 0, "failed": 0, "skipped": 0}
        if not self.settings.pubsub_topic:
            logger.info("PUBSUB_TOPIC not configured; skipping watch renewal")
            return summary
        for user_id, account, subscription in list(self.store.iter_push_subscriptions()):
            if not subscription.enabled:
                summary["skipped"] += 1
                continue
            try:
                credential = self.credentials.get_account_credential(user_id, account)
                if credential is None:
                    summary["failed"] += 1
                    continue
                response = self.gateway_factory(credential.access_token).start_watch(self.settings.pubsub_topic)
                if response.get("historyId"):
                    subscription.history_id = _optional_str(response.get("historyId"))
                    subscription.expiration = _optional_str(response.get("expiration"))
                    self.store.put_push_subscription(user_id, account, subscription)
                summary["renewed"] += 1
            except Exception as exc:  # noqa: BLE001 - keep renewing the rest
                logger.error("Watch renewal for %s (user %s) failed: %s", account, user_id, exc)
                summary["failed"] += 1
        logger.info("Watch renewal finished: %s", summary)
        return summary

    # ---------- Setup ----------
    def register_webhook(self, webhook_url: str) -> None:
        self.telegram.set_webhook(webhook_url)
        self.telegram.delete_my_commands()


def _fresh(ctx: ChatContext) -> ChatContext:
    """Same chat, but reply with a new message instead of editing."""
    return ChatContext(chat_id=ctx.chat_id, user_id=ctx.user_id)


def _context_from(message: Dict[str, Any], sender: Dict[str, Any]) -> Optional[ChatContext]:
    chat_id = (message.get("chat") or {}).get("id")
    user_id = sender.get("id")
    if chat_id is None or user_id is None:
        return None
    return ChatContext(chat_id=chat_id, user_id=str(user_id))


def _optional_str(value: Any) -> Optional[str]:
    return str(value) if value not in (None, "") else None


def build_bot(settings: Optional[Settings] = None, kv: Optional[BaseKeyValueStore] = None) -> GmailBot:
    settings = settings or load_settings()
    if kv is None:
        kv = get_kv_store(
            settings.supabase_url,
            settings.supabase_service_role_key,
            table=settings.kv_table,
            namespace=settings.kv_namespace,
        )
    logger.info("Using %s for bot state", kv.__class__.__name__)
    return GmailBot(settings, CorrelationStore(kv), TelegramClient(settings.telegram_token))
