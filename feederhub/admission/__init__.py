"""
Admission control: credentials, feeder status checks and throttling.

Import from the submodules directly (feederhub.admission.gate,
feederhub.admission.credentials); the feeder registry depends on the
credential helpers, and the gate depends on the registry.
"""
