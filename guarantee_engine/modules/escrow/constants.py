"""Escrow state graph, event types, windows and customer-facing status labels."""

from __future__ import annotations

from datetime import timedelta

from guarantee_engine.models.enums import EscrowStatus

# Forward order of the main flow; moves along it may skip ahead but never go back
MAIN_FLOW: tuple[EscrowStatus, ...] = (
    EscrowStatus.PENDING_PAYMENT,
    EscrowStatus.PAYMENT_RECEIVED,
    EscrowStatus.FUNDS_SECURED,
    EscrowStatus.ORDER_PLACED,
    EscrowStatus.ORDER_CONFIRMED,
    EscrowStatus.IN_TRANSIT,
    EscrowStatus.DELIVERED,
    EscrowStatus.VERIFICATION,
    EscrowStatus.COMPLETED,
)

MAIN_FLOW_INDEX: dict[EscrowStatus, int] = {status: i for i, status in enumerate(MAIN_FLOW)}

# Absorbing statuses (no further transitions possible)
TERMINAL_STATUSES: frozenset[EscrowStatus] = frozenset({
    EscrowStatus.REFUNDED,
    EscrowStatus.CANCELLED,
})

# Targets a completed sale can no longer reach
COMPLETION_LOCKED_TARGETS: frozenset[EscrowStatus] = frozenset({
    EscrowStatus.CANCELLED,
    EscrowStatus.DISPUTED,
})

# Statuses the sweeper may auto-complete once the verification window lapses
AWAITING_VERIFICATION_STATUSES: tuple[EscrowStatus, ...] = (
    EscrowStatus.DELIVERED,
    EscrowStatus.VERIFICATION,
)

# Event type strings for the outbox
EVENT_ESCROW_STATUS_CHANGED = "escrow.status_changed"
AGGREGATE_TYPE = "guaranteed_transaction"

# Windows
MONEY_BACK_VALIDITY = timedelta(days=30)
REPLACEMENT_VALIDITY = timedelta(days=7)
PARTIAL_REFUND_VALIDITY = timedelta(days=7)

# Timeline notes
NOTE_CREATED = "Transaction created"
NOTE_AUTO_COMPLETED = "Auto-completed after verification window"

# Customer-facing labels rendered by the notification collaborator
STATUS_LABELS: dict[EscrowStatus, dict[str, str]] = {
    EscrowStatus.PENDING_PAYMENT: {
        "label": "En attente de paiement",
        "description": "Effectuez votre paiement pour démarrer la commande",
        "icon": "⏳",
    },
    EscrowStatus.PAYMENT_RECEIVED: {
        "label": "Paiement reçu",
        "description": "Nous avons bien reçu votre paiement",
        "icon": "✅",
    },
    EscrowStatus.FUNDS_SECURED: {
        "label": "Fonds sécurisés",
        "description": "Votre argent est protégé. Nous préparons votre commande.",
        "icon": "🔒",
    },
    EscrowStatus.ORDER_PLACED: {
        "label": "Commande passée",
        "description": "Votre commande a été transmise au fournisseur",
        "icon": "📝",
    },
    EscrowStatus.ORDER_CONFIRMED: {
        "label": "Commande confirmée",
        "description": "Le fournisseur a confirmé la disponibilité",
        "icon": "✔️",
    },
    EscrowStatus.IN_TRANSIT: {
        "label": "En cours de livraison",
        "description": "Votre colis est en route vers vous",
        "icon": "🚚",
    },
    EscrowStatus.DELIVERED: {
        "label": "Livré",
        "description": "Votre colis a été livré. Vérifiez-le !",
        "icon": "📦",
    },
    EscrowStatus.VERIFICATION: {
        "label": "Période de vérification",
        "description": "Vous avez 48h pour vérifier votre commande",
        "icon": "🔍",
    },
    EscrowStatus.COMPLETED: {
        "label": "Terminé",
        "description": "Transaction complétée avec succès. Merci !",
        "icon": "🎉",
    },
    EscrowStatus.DISPUTED: {
        "label": "Litige en cours",
        "description": "Nous examinons votre réclamation",
        "icon": "⚠️",
    },
    EscrowStatus.REFUNDED: {
        "label": "Remboursé",
        "description": "Le remboursement a été effectué",
        "icon": "💰",
    },
    EscrowStatus.CANCELLED: {
        "label": "Annulé",
        "description": "Cette transaction a été annulée",
        "icon": "❌",
    },
}
