"""
Operational scripts, run from backend/

    python -m scripts.seed_data               demo tenant, users and workflow
    python -m scripts.run_escalation_sweep    one escalation pass, optionally --now <ISO time>
"""
