"""Service de facturation PME_TPE: abonnements, paiements de demandes et callbacks processeurs."""
