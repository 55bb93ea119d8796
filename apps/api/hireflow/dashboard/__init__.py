from hireflow.dashboard.broadcaster import DashboardBroadcaster, DashboardConnection

__all__ = ["DashboardBroadcaster", "DashboardConnection"]
