ROLE_RESIDENT = "resident"
ROLE_COORDINATOR = "coordinator"
ROLE_SUPER_ADMIN = "super_admin"

MANAGER_ROLES = (ROLE_COORDINATOR, ROLE_SUPER_ADMIN)

PAYMENT_PENDING = "pending"
PAYMENT_PAID = "paid"
PAYMENT_OVERDUE = "overdue"

EXPENSE_APPROVED = "approved"
EXPENSE_PENDING = "pending"

FUNDING_CURRENT_REVENUE = "current_revenue"
FUNDING_CARRYOVER = "carryover"
FUNDING_SOURCES = (FUNDING_CURRENT_REVENUE, FUNDING_CARRYOVER)

PAYROLL_EXPENSE_CATEGORY = "salarios"

CAMPAIGN_ACTIVE = "active"
CAMPAIGN_STATUSES = ("active", "completed", "cancelled")

CONTRIBUTION_PENDING = "pending"
CONTRIBUTION_PAID = "paid"

# Month names as typed in payment descriptions; index + 1 is the month number.
MONTH_NAMES = [
    "janeiro",
    "fevereiro",
    "março",
    "abril",
    "maio",
    "junho",
    "julho",
    "agosto",
    "setembro",
    "outubro",
    "novembro",
    "dezembro",
]

CURRENCY_SYMBOLS = {
    "AOA": "Kz",
    "EUR": "€",
    "BRL": "R$",
    "MZN": "MT",
}

CURRENCY_NAMES = {
    "AOA": "Kwanza Angolano",
    "EUR": "Euro",
    "BRL": "Real Brasileiro",
    "MZN": "Metical Moçambicano",
}

LINKING_CODE_LENGTH = 8
LINKING_CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"

# Temporary passwords leave out look-alike characters.
TEMP_PASSWORD_LENGTH = 12
TEMP_PASSWORD_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZabcdefghijkmnpqrstuvwxyz23456789"

VISITOR_PASS_DEFAULT_HOURS = 12

OCCURRENCE_OPEN = "aberta"
OCCURRENCE_IN_PROGRESS = "em_andamento"
OCCURRENCE_RESOLVED = "resolvida"
OCCURRENCE_STATUSES = (OCCURRENCE_OPEN, OCCURRENCE_IN_PROGRESS, OCCURRENCE_RESOLVED)
OCCURRENCE_CATEGORIES = ("reclamacao", "manutencao", "sugestao", "seguranca")
OCCURRENCE_PRIORITIES = ("baixa", "media", "alta", "urgente")
OCCURRENCE_NUMBER_ATTEMPTS = 3
