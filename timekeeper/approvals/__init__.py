"""Approvals module — approval, rejection and correction resolution."""
