"""Transactional e-mail bodies. Pure renderers, each returns ``(subject, html)``."""
from html import escape
from typing import Any, Dict, List, Optional, Tuple
from fusionmarkt.orders.contracts import format_try, format_tr_date

Rendered = Tuple[str, str]

BRAND = "FusionMarkt"
ACCOUNT_URL = "https://fusionmarkt.com/hesabim"

STATUS_LABELS = {
    "PENDING": "Beklemede",
    "CONFIRMED": "Onaylandı",
    "PROCESSING": "Hazırlanıyor",
    "SHIPPED": "Kargoya Verildi",
    "DELIVERED": "Teslim Edildi",
    "CANCELLED": "İptal Edildi",
    "REFUNDED": "İade Edildi",
}

PAYMENT_METHOD_LABELS = {
    "BANK_TRANSFER": "Havale / EFT",
    "CREDIT_CARD": "Kredi Kartı",
}


def _base(body: str) -> str:
    return (
        "<!doctype html><html><body style=\"font-family: Arial, sans-serif; background: #0a0a0a; color: #ffffff;\">"
        f"<div style=\"max-width: 600px; margin: 0 auto; padding: 24px;\"><h2>{BRAND}</h2>{body}"
        "<p style=\"font-size: 12px; color: #888;\">Bu e-posta FusionMarkt tarafından gönderilmiştir.</p>"
        "</div></body></html>"
    )


def _greeting(name: Optional[str]) -> str:
    return f"<p>Merhaba {escape(name)},</p>" if name else "<p>Merhaba,</p>"


def _button(label: str, url: str) -> str:
    return f'<p><a href="{escape(url, quote=True)}" style="color: #10b981;">{label}</a></p>'


def _bank_info(order_number: str) -> str:
    return (
        "<div><p><strong>Havale / EFT Bilgileri</strong></p>"
        "<p>Banka: Ziraat Bankası<br>Hesap Sahibi: FusionMarkt A.Ş.<br>IBAN: TR00 0000 0000 0000 0000 0000 00</p>"
        f"<p>Açıklama kısmına sipariş numaranızı yazınız: <strong>{escape(order_number)}</strong></p></div>"
    )


def _set_password_note(set_password_url: Optional[str]) -> str:
    if not set_password_url:
        return ""
    return (
        "<p>Siparişiniz için sizin adınıza bir hesap oluşturuldu. Hesabınıza giriş yapabilmek için "
        "önce bir şifre belirlemeniz gerekiyor.</p>" + _button("Şifremi Belirle", set_password_url)
    )


def order_pending_payment(order_number: str, customer_name: Optional[str], total: Any) -> Rendered:
    subject = f"{BRAND} - Ödeme Bekleniyor #{order_number}"
    body = (
        _greeting(customer_name)
        + f"<p>#{escape(order_number)} numaralı siparişiniz alındı. Toplam tutar: <strong>{format_try(total)}</strong></p>"
        + "<p>Siparişiniz ödemeniz onaylandıktan sonra hazırlanmaya başlanacaktır.</p>"
        + _bank_info(order_number)
        + _button("Siparişimi Görüntüle", ACCOUNT_URL)
    )
    return subject, _base(body)


def payment_confirmed(order_number: str, customer_name: Optional[str], total: Any) -> Rendered:
    subject = f"{BRAND} - Ödemeniz Onaylandı #{order_number}"
    body = (
        _greeting(customer_name)
        + f"<p>#{escape(order_number)} numaralı siparişinizin ödemesi ({format_try(total)}) başarıyla alındı.</p>"
        + "<p>Siparişiniz hazırlanıyor, kargoya verildiğinde size haber vereceğiz.</p>"
        + _button("Siparişimi Görüntüle", ACCOUNT_URL)
    )
    return subject, _base(body)


def invoice_ready(order_number: str, customer_name: Optional[str], invoice_url: Optional[str] = None) -> Rendered:
    subject = f"{BRAND} - Faturanız Hazır #{order_number}"
    body = _greeting(customer_name) + f"<p>#{escape(order_number)} numaralı siparişinizin faturası hazır.</p>"
    body += _button("Faturayı Görüntüle", invoice_url or ACCOUNT_URL)
    return subject, _base(body)


def order_status_changed(order_number: str, customer_name: Optional[str], status: str,
                         tracking_number: Optional[str] = None, carrier_name: Optional[str] = None) -> Rendered:
    label = STATUS_LABELS.get(status, status)
    if status == "SHIPPED":
        subject = f"{BRAND} - Siparişiniz Kargoya Verildi #{order_number}"
    else:
        subject = f"{BRAND} - Sipariş Durumu: {label} #{order_number}"
    body = _greeting(customer_name) + "<p>Siparişinizin durumu güncellendi:</p>"
    body += f"<p><strong>{escape(label)}</strong></p>"
    if tracking_number:
        carrier = f" ({escape(carrier_name)})" if carrier_name else ""
        body += f"<p>Kargo takip numarası: <strong>{escape(tracking_number)}</strong>{carrier}</p>"
    body += _button("Siparişimi Görüntüle", ACCOUNT_URL)
    return subject, _base(body)


def guest_account_created(customer_name: Optional[str], set_password_url: str) -> Rendered:
    subject = f"{BRAND} - Hesabınız Oluşturuldu"
    body = _greeting(customer_name) + _set_password_note(set_password_url)
    body += "<p>Bu işlemi siz yapmadıysanız bu e-postayı dikkate almayabilirsiniz.</p>"
    return subject, _base(body)


def admin_new_order(order_number: str, order_date, customer_name: str, customer_email: str,
                    customer_phone: str, total: Any, item_count: int, payment_method: str,
                    shipping_city: str, items: List[Dict[str, Any]]) -> Rendered:
    subject = f"🔔 Yeni Sipariş #{order_number} - {format_try(total)}"
    rows = "".join(
        f"<tr><td>{escape(str(it.get('name') or 'Ürün'))}</td><td>{it.get('quantity')}</td>"
        f"<td>{format_try(it.get('price') or 0)}</td></tr>"
        for it in items
    )
    body = (
        f"<p><strong>Sipariş:</strong> #{escape(order_number)}<br>"
        f"<strong>Tarih:</strong> {format_tr_date(order_date)}<br>"
        f"<strong>Müşteri:</strong> {escape(customer_name)} ({escape(customer_email)}) {escape(customer_phone or '')}<br>"
        f"<strong>Ödeme:</strong> {PAYMENT_METHOD_LABELS.get(payment_method, payment_method)}<br>"
        f"<strong>Teslimat Şehri:</strong> {escape(shipping_city or '')}<br>"
        f"<strong>Ürün Sayısı:</strong> {item_count}<br>"
        f"<strong>Toplam:</strong> {format_try(total)}</p>"
        f"<table><thead><tr><th>Ürün</th><th>Adet</th><th>Fiyat</th></tr></thead><tbody>{rows}</tbody></table>"
    )
    return subject, _base(body)


TEMPLATES = {
    "order_pending_payment": order_pending_payment,
    "payment_confirmed": payment_confirmed,
    "invoice_ready": invoice_ready,
    "order_status_changed": order_status_changed,
    "guest_account_created": guest_account_created,
    "admin_new_order": admin_new_order,
}


def render(kind: str, params: Dict[str, Any]) -> Rendered:
    try:
        template = TEMPLATES[kind]
    except KeyError:
        raise ValueError(f"unknown notification kind: {kind}")
    return template(**params)
