from fusionmarkt.common.logging_setup import get_logger

logger = get_logger("fusionmarkt.payments")

DEFAULT_CATEGORY = "Genel"
DEFAULT_ZIP_CODE = "00000"
DEFAULT_IDENTITY_NUMBER = "11111111111"
DEFAULT_GSM = "+905000000000"
BASKET_ITEM_NAME_MAX = 50

ENDPOINTS = {
    "threeds_initialize": "/payment/3dsecure/initialize",
    "threeds_auth": "/payment/3dsecure/auth",
    "refund": "/payment/refund",
    "cancel": "/payment/cancel",
    "detail": "/payment/detail",
    "installment": "/payment/iyzipos/installment",
}

# 3-D Secure mdStatus values other than "1" (verified)
MD_STATUS_MESSAGES = {
    "0": "3D Secure doğrulaması yapılamadı",
    "2": "Kart sahibi veya bankası sisteme kayıtlı değil",
    "3": "Kartın bankası sisteme kayıtlı değil",
    "4": "Doğrulama denemesi, kart sahibi sisteme daha sonra kaydolmayı seçmiş",
    "5": "Doğrulama yapılamıyor",
    "6": "3D Secure hatası",
    "7": "Sistem hatası",
    "8": "Bilinmeyen kart no",
}
MD_STATUS_DEFAULT = "3D doğrulama başarısız"

PAYMENT_ERROR_MESSAGES = {
    "12": "Kart numarası geçersiz",
    "15": "CVC kodu geçersiz",
    "10051": "Yetersiz bakiye",
    "10005": "İşlem onaylanmadı",
    "10012": "Geçersiz işlem",
    "10041": "Kayıp kart",
    "10043": "Çalıntı kart",
    "10054": "Kartın süresi dolmuş",
    "10057": "Kart sahibi bu işlemi yapamaz",
    "10058": "Terminal bu işlemi yapamaz",
    "10034": "Dolandırıcılık şüphesi",
}
PAYMENT_INIT_DEFAULT = "Ödeme başlatılamadı"
PAYMENT_FAILED_DEFAULT = "Ödeme başarısız"
PAYMENT_PENDING_MESSAGE = "Ödeme durumu doğrulanamadı, kontrol ediliyor"


def md_status_message(md_status) -> str:
    return MD_STATUS_MESSAGES.get(str(md_status), MD_STATUS_DEFAULT)


def payment_error_message(error_code, fallback: str) -> str:
    return PAYMENT_ERROR_MESSAGES.get(str(error_code), fallback) if error_code is not None else fallback
