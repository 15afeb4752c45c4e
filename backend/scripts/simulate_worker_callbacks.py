"""
Scraping Worker Callback Simulator
==================================
Replays what the scraping worker sends for a session: a progress update, a
completion carrying a two-item batch, then the same completion again and a
late progress update (both must leave the session unchanged).

Usage:
    python scripts/simulate_worker_callbacks.py <session_id>
    python scripts/simulate_worker_callbacks.py <session_id> --url https://your-domain.com
"""

import json
import os
import sys

import httpx
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# ============================================
# CONFIGURATION
# ============================================

DEFAULT_BASE_URL = "http://localhost:8000"
WEBHOOK_PATH = "/api/v1/scraping/webhook"

SAMPLE_BATCH = [
    {
        "Titre": "Restaurant Le Gourmet",
        "Rue": "123 Rue de Paris",
        "Code postal": "75001",
        "Ville": "Paris",
        "Téléphone": 33123456789,
        "Email": "contact@legourmet.fr",
        "Site web": "https://legourmet.fr",
        "Score total": 4.5,
        "Nombre d'avis": 245,
        "Nom de catégorie": "Restaurant",
    },
    {
        "Titre": "Bistro Parisien",
        "Rue": "456 Avenue des Champs",
        "Code postal": "75008",
        "Ville": "Paris",
        "Téléphone": "+33 1 98 76 54 32",
        "Email": "aucun_mail",
        "Site web": "https://bistroparisien.fr",
        "Score total": 4.2,
        "Nombre d'avis": 128,
        "Nom de catégorie": "Restaurant",
    },
]


def build_steps(session_id: str):
    completion = [{
        "session_id": session_id,
        "statut": "termine",
        "lien_google_sheet": "https://docs.google.com/spreadsheets/d/example",
        "count": len(SAMPLE_BATCH),
        "json_donnee_scrappe": json.dumps(SAMPLE_BATCH, ensure_ascii=False),
    }]
    return [
        ("Progress update", {"session_id": session_id, "statut": "en_cours", "progress_percentage": 50}),
        ("Completion with results", completion),
        ("Duplicate completion", completion),
        ("Late progress update", {"session_id": session_id, "statut": "en_cours", "progress_percentage": 10}),
    ]


def send(client: httpx.Client, webhook_url: str, label: str, payload) -> bool:
    headers = {"Content-Type": "application/json"}
    secret = os.getenv("SCRAPING_WEBHOOK_SECRET")
    if secret:
        headers["X-Webhook-Secret"] = secret

    print(f"\n⏳ {label}...")
    try:
        response = client.post(webhook_url, json=payload, headers=headers)
    except httpx.HTTPError as e:
        print(f"❌ Error: {e}")
        return False

    try:
        body = response.json()
    except ValueError:
        body = response.text
    icon = "✅" if response.status_code == 200 else "❌"
    print(f"{icon} {response.status_code}: {json.dumps(body, ensure_ascii=False, indent=2)}")
    return response.status_code == 200


def main():
    print("=" * 50)
    print("🗺️  SCRAPING WORKER SIMULATOR")
    print("=" * 50)

    if len(sys.argv) < 2:
        print("❌ Usage: python scripts/simulate_worker_callbacks.py <session_id> [--url BASE_URL]")
        return 1

    session_id = sys.argv[1]
    base_url = DEFAULT_BASE_URL
    if len(sys.argv) > 3 and sys.argv[2] == "--url":
        base_url = sys.argv[3]

    webhook_url = f"{base_url.rstrip('/')}{WEBHOOK_PATH}"
    print(f"📡 Webhook endpoint: {webhook_url}")
    print(f"🆔 Session: {session_id}")

    with httpx.Client(timeout=30.0) as client:
        results = [send(client, webhook_url, label, payload) for label, payload in build_steps(session_id)]

    print("=" * 50)
    print(f"\n{sum(results)}/{len(results)} callbacks accepted")
    return 0 if all(results) else 1


if __name__ == "__main__":
    sys.exit(main())
