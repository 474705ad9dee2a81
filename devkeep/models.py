from enum import Enum


# Enums
class PlanName(str, Enum):
    basic = "basic"
    pro = "pro"
    premium = "premium"


class SubscriptionStatus(str, Enum):
    active = "active"
    trialing = "trialing"
    past_due = "past_due"
    canceled = "canceled"


class ProjectRole(str, Enum):
    collaborator = "Collaborator"
    admin = "Admin"
    project_lead = "Project Lead"


# Collaborator roles allowed to manage tasks
MANAGING_PROJECT_ROLES = {ProjectRole.admin.value, ProjectRole.project_lead.value}


class CommunityRole(str, Enum):
    admin = "admin"
    member = "member"


class ProjectStatus(str, Enum):
    active = "Active"
    archived = "Archived"


class Environment(str, Enum):
    local = "Local"
    staging = "Staging"
    production = "Production"


class TaskStatus(str, Enum):
    todo = "To Do"
    in_progress = "In Progress"
    done = "Done"


class TaskPriority(str, Enum):
    low = "Low"
    medium = "Medium"
    high = "High"


class CommandCategory(str, Enum):
    vscode = "VSCode"
    git = "Git"
    docker = "Docker"
    npm = "NPM"
    server = "Server"
    other = "Other"


class AttendanceStatus(str, Enum):
    active = "active"
    completed = "completed"


class AttendancePeriod(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"


class NotificationType(str, Enum):
    task_update = "task_update"
    task_assigned = "task_assigned"
    community_event = "community_event"
    project_event = "project_event"
    meeting_started = "meeting_started"
    birthday = "birthday"
    system = "system"
