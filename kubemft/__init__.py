"""kubemft: Kubernetes manifests as OCI artifacts.

A local, content-addressed cache of manifests in OCI image-layout form, a
copy engine that moves them to and from registries, reference-counted
deletion, and detached ECDSA signatures stored next to the content.
"""

__version__ = "0.1.0"
__description__ = "Store, sign and distribute Kubernetes manifests as OCI artifacts"

from kubemft.config import MftSettings
from kubemft.core.repository import Registry, Repository
from kubemft.signature import KeyStore, Signer, Verifier

__all__ = ["MftSettings", "Registry", "Repository", "KeyStore", "Signer", "Verifier", "__version__"]
