"""Supabase-backed chip status repository."""

from dataclasses import dataclass
from datetime import UTC, datetime

from supabase import Client

from firezap.services.chips import ChipRepository


@dataclass
class SupabaseChipRepository(ChipRepository):
    """Supabase implementation for mirroring chip connection state."""

    client: Client

    def update_status(self, phone_number: str, status: str, connected: bool) -> None:
        """Update the status of every chip registered with the phone number."""
        self.client.table("chips").update(
            {
                "status": status,
                "connected": connected,
                "last_activity": datetime.now(tz=UTC).isoformat(),
            }
        ).eq("phone_number", phone_number).execute()
