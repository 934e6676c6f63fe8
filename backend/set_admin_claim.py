#!/usr/bin/env python3
"""
Firebase Admin SDK ile kullanıcıya admin custom claim ekler (sunucu dışı bootstrap yolu).

Usage: python set_admin_claim.py <user_email>
"""
import sys

from dotenv import load_dotenv
from firebase_admin import auth

from phrames.config import Settings, firestore_client, init_firebase
from phrames.repositories.audit import FirestoreAuditLog
from phrames.repositories.users import FirestoreUserStore


def set_admin_claim(user_email: str) -> bool:
    """Kullanıcıya admin custom claim ekler, Firestore'a yansıtır ve bootstrap işaretini kapatır."""
    settings = Settings()
    try:
        app = init_firebase(settings)
        print("✅ Firebase Admin SDK initialized")
    except Exception as e:
        print(f"❌ Firebase initialization failed: {e}")
        return False

    db = firestore_client(app)
    users = FirestoreUserStore(db, settings.storage_timeout_seconds)
    try:
        user = auth.get_user_by_email(user_email, app=app)
        print(f"✅ User found: {user.uid} - {user.email}")

        claims = dict(user.custom_claims or {})
        claims["isAdmin"] = True
        auth.set_custom_user_claims(user.uid, claims, app=app)
        users.set_admin(user.uid, True)
        users.claim_bootstrap(user.uid)
        FirestoreAuditLog(db, settings.storage_timeout_seconds).record(
            "admin_granted", f"Admin access granted to {user.uid} from CLI",
            {"targetUserId": user.uid, "policy": "cli"},
        )

        # Doğrula
        user = auth.get_user(user.uid, app=app)
        print(f"✅ Custom claims: {user.custom_claims}")
        return True

    except auth.UserNotFoundError:
        print(f"❌ User not found: {user_email}")
        return False
    except Exception as e:
        print(f"❌ Error setting admin claim: {e}")
        return False


if __name__ == "__main__":
    load_dotenv()
    if len(sys.argv) != 2:
        print("Usage: python set_admin_claim.py <user_email>")
        print("Example: python set_admin_claim.py admin@example.com")
        sys.exit(1)

    user_email = sys.argv[1]
    print(f"Setting admin claim for: {user_email}")

    if set_admin_claim(user_email):
        print("🎉 Admin claim set successfully!")
        print("The user will need to sign out and sign in again for the changes to take effect.")
    else:
        print("💥 Failed to set admin claim")
        sys.exit(1)
