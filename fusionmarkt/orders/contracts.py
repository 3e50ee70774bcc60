"""
Contract texts accepted at checkout.

The rendered HTML is frozen into the order's status history, so these
renderers must stay pure: same buyer, items and date give the same text.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from html import escape
from typing import Any, Dict, List, Optional

SELLER_TITLE = "ASDTC MÜHENDİSLİK TİCARET A.Ş."
SELLER_ADDRESS = "Ankara, Türkiye"
SELLER_EMAIL = "info@fusionmarkt.com"
SELLER_PHONE = "+90 850 840 6160"
TERMS_LAST_UPDATED = "25 Aralık 2024"

# Türkiye has no DST, contract dates are shown in local time
TR_TZ = timezone(timedelta(hours=3))


@dataclass
class BuyerInfo:
    full_name: str
    email: str
    address: str = ""
    phone: str = ""
    tc_kimlik_no: Optional[str] = None


@dataclass
class ContractLine:
    name: str
    quantity: int
    price: Decimal
    variant_value: Optional[str] = None


def format_try(amount: Any) -> str:
    """Turkish lira with tr-TR grouping, e.g. ``₺1.234,50``."""
    value = Decimal(str(amount)).quantize(Decimal("0.01"))
    sign = "-" if value < 0 else ""
    grouped = f"{abs(value):,.2f}"       # 1,234.50
    grouped = grouped.replace(",", "_").replace(".", ",").replace("_", ".")
    return f"{sign}₺{grouped}"


def format_tr_date(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(TR_TZ).strftime("%d.%m.%Y %H:%M")


def buyer_address_line(address_line1: Optional[str], address_line2: Optional[str],
                       district: Optional[str], city: Optional[str]) -> str:
    line = address_line1 or ""
    if address_line2:
        line += f", {address_line2}"
    return f"{line}, {district or ''}, {city or ''}"


def _section(title: str, body: str) -> str:
    return f'<div class="contract-section"><h3>{title}</h3>{body}</div>'


def _ul(items: List[str]) -> str:
    return "<ul>" + "".join(f"<li>{i}</li>" for i in items) + "</ul>"


def _footer(formatted_date: str) -> str:
    return (
        '<div class="contract-footer">'
        "<div>✓ Elektronik Ortamda Onaylandı</div>"
        f"<p>Bu sözleşme {formatted_date} tarihinde elektronik ortamda onaylanmıştır.</p>"
        f"<p>{SELLER_TITLE} | FUSIONMARKT</p>"
        "</div>"
    )


def _info_rows(rows: List[tuple]) -> str:
    return "".join(
        f'<div class="row"><span class="label">{label}:</span><span>{escape(str(value))}</span></div>'
        for label, value in rows
    )


def render_distance_sales_contract_html(buyer: BuyerInfo, lines: List[ContractLine], totals: Dict[str, Any],
                                        order_number: str, date: datetime) -> str:
    formatted_date = format_tr_date(date)

    buyer_rows = [("Ad Soyad", buyer.full_name)]
    if buyer.tc_kimlik_no:
        buyer_rows.append(("TC Kimlik No", buyer.tc_kimlik_no))
    buyer_rows += [("Adres", buyer.address), ("Telefon", buyer.phone), ("E-posta", buyer.email)]

    item_rows = "".join(
        "<tr>"
        f"<td>{escape(ln.name)}{' (' + escape(ln.variant_value) + ')' if ln.variant_value else ''}</td>"
        f"<td>{ln.quantity}</td>"
        f"<td>{format_try(ln.price)}</td>"
        f"<td>{format_try(Decimal(str(ln.price)) * ln.quantity)}</td>"
        "</tr>"
        for ln in lines
    )
    shipping = Decimal(str(totals.get("shipping", 0)))
    discount = Decimal(str(totals.get("discount", 0)))
    summary = (
        '<div class="summary">'
        f"<div><span>Ara Toplam</span><span>{format_try(totals.get('subtotal', 0))}</span></div>"
        f"<div><span>Kargo</span><span>{'Ücretsiz' if shipping == 0 else format_try(shipping)}</span></div>"
        + (f"<div><span>İndirim</span><span>-{format_try(discount)}</span></div>" if discount > 0 else "")
        + f"<div class=\"grand-total\"><span>Genel Toplam</span><span>{format_try(totals.get('grandTotal', 0))}</span></div>"
        "</div>"
    )

    return (
        '<div class="contract">'
        "<h1>MESAFELİ SATIŞ SÖZLEŞMESİ</h1>"
        f"<div class=\"meta\"><span>Ref: <strong>{escape(order_number)}</strong></span>"
        f"<span>Tarih: <strong>{formatted_date}</strong></span></div>"
        + _section("SATICI BİLGİLERİ", _info_rows([
            ("Unvan", SELLER_TITLE), ("Adres", SELLER_ADDRESS),
            ("E-posta", SELLER_EMAIL), ("Telefon", SELLER_PHONE),
        ]))
        + _section("ALICI BİLGİLERİ", _info_rows(buyer_rows))
        + _section(
            "SİPARİŞ EDİLEN ÜRÜNLER",
            "<table><thead><tr><th>Ürün</th><th>Adet</th><th>Birim Fiyat</th><th>Toplam</th></tr></thead>"
            f"<tbody>{item_rows}</tbody></table>" + summary,
        )
        + _section("ÖDEME",
            "<p>Minimum Sipariş: İnternet mağazasında minimum sipariş tutarı 150 TL'dir.</p>"
            "<p>ALICI, işbu Sözleşme kapsamında sipariş verdiği ürün(ler) için KDV dahil satış bedelini ve "
            "kargo ücretlerini Sözleşme'de belirtilen ödeme koşullarına uygun olarak ödeyecektir.</p>"
            + _ul(["Kabul Edilen Kartlar: Visa, Amex, MasterCard kredi kartları",
                   "Ön Provizyon: Siparişler banka onayı sonrası işleme alınır"]))
        + _section("TESLİMAT", _ul([
            "Sipariş onayından itibaren 1-5 iş günü içinde kargoya verilir",
            "Kargo takip bilgileri e-posta ile bildirilir",
            "Teslim alınamayan siparişler 3 gün bekletilir",
        ]))
        + _section("CAYMA HAKKI",
            "<p>ALICI, sözleşme konusu ürünü teslim aldığı tarihten itibaren 14 (on dört) gün içinde herhangi "
            "bir gerekçe göstermeksizin ve cezai şart ödemeksizin cayma hakkına sahiptir.</p>")
        + _section("YETKİLİ MAHKEME",
            "<p>İşbu sözleşmeden doğan uyuşmazlıklarda Ankara Mahkemeleri ve İcra Daireleri yetkilidir.</p>")
        + _footer(formatted_date)
        + "</div>"
    )


def render_terms_and_conditions_html(buyer: BuyerInfo, order_number: str, date: datetime) -> str:
    formatted_date = format_tr_date(date)
    return (
        '<div class="contract">'
        "<h1>KULLANICI SÖZLEŞMESİ VE ŞARTLAR</h1>"
        f"<div class=\"meta\"><span>Ref: <strong>{escape(order_number)}</strong></span>"
        f"<span>Tarih: <strong>{formatted_date}</strong></span></div>"
        + _info_rows([("Kullanıcı", buyer.full_name), ("E-posta", buyer.email)])
        + _section("1. Genel Hükümler",
            "<p>Bu web sitesini (www.fusionmarkt.com) kullanarak, işbu kullanım koşullarını kabul etmiş "
            "sayılırsınız. Site üzerinden alışveriş yapmanız halinde Mesafeli Satış Sözleşmesi hükümleri de "
            "geçerli olacaktır.</p>")
        + _section("2. Hizmet Tanımı",
            "<p>FusionMarkt, teknoloji ürünleri satan bir e-ticaret platformudur. Sitede sunulan ürünler stok "
            "durumuna göre değişebilir ve fiyatlar önceden haber verilmeksizin güncellenebilir.</p>")
        + _section("3. Üyelik Koşulları", _ul([
            "Üyelik için 18 yaşından büyük olmak veya yasal veli iznine sahip olmak gerekmektedir",
            "Sağlanan bilgilerin doğruluğundan kullanıcı sorumludur",
            "Hesap güvenliği kullanıcının sorumluluğundadır",
            "Şifrenizin üçüncü kişilerle paylaşılmaması gerekmektedir",
        ]))
        + _section("4. Fikri Mülkiyet Hakları",
            "<p>Site içeriği, logoları, tasarımları ve diğer tüm materyaller FusionMarkt'ın mülkiyetindedir. "
            "İzinsiz kullanımı yasaktır.</p>")
        + _section("5. Gizlilik",
            "<p>Kişisel verileriniz Gizlilik Politikamız ve KVKK kapsamında işlenmektedir.</p>")
        + _section("6. Sorumluluk Reddi",
            "<p>FusionMarkt, site kullanımından kaynaklanabilecek doğrudan veya dolaylı zararlardan sorumlu "
            "tutulamaz.</p>")
        + _section("7. Değişiklikler",
            "<p>Bu sözleşme şartları önceden haber verilmeksizin değiştirilebilir. Güncel versiyon her zaman "
            "sitede yayınlanacaktır.</p>")
        + _section("8. Uygulanacak Hukuk",
            "<p>Bu sözleşme Türkiye Cumhuriyeti kanunlarına tabidir. Uyuşmazlıklarda Ankara Mahkemeleri ve "
            "İcra Daireleri yetkilidir.</p>")
        + f"<div class=\"updated\">Son Güncelleme: {TERMS_LAST_UPDATED}</div>"
        + _footer(formatted_date)
        + "</div>"
    )
