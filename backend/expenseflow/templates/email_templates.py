"""
Email Templates - HTML bodies for approval notifications

Every template takes the outbox payload and returns {"subject", "body"}.
"""
from typing import Any, Callable, Dict, Optional

from ..domain.enums import NotificationTemplateKey


# =============================================================================
# Building Blocks
# =============================================================================

def get_base_template(
    content: str,
    action_button_text: Optional[str] = None,
    action_button_url: Optional[str] = None,
    accent_color: str = "#3B82F6"
) -> str:
    """Table-based wrapper so the mail renders the same in Outlook and Gmail"""
    button_html = ""
    if action_button_text and action_button_url:
        button_html = f'''
        <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="100%" style="margin: 28px 0;">
            <tr>
                <td align="center">
                    <a href="{action_button_url}"
                       style="display: inline-block; background-color: {accent_color}; color: #ffffff;
                              text-decoration: none; padding: 12px 28px; border-radius: 6px;
                              font-weight: 600; font-size: 14px; font-family: Arial, sans-serif;">
                        {action_button_text}
                    </a>
                </td>
            </tr>
        </table>
        '''

    return f'''
<!DOCTYPE html>
<html>
<head>
    <meta http-equiv="Content-Type" content="text/html; charset=UTF-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1.0" />
    <title>ExpenseFlow</title>
</head>
<body style="margin: 0; padding: 0; background-color: #F3F4F6;">
    <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="100%">
        <tr>
            <td align="center" style="padding: 32px 16px;">
                <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="600"
                       style="background-color: #ffffff; border-top: 4px solid {accent_color};">
                    <tr>
                        <td style="padding: 32px; font-family: Arial, sans-serif; font-size: 14px; color: #1F2937;">
                            {content}
                            {button_html}
                        </td>
                    </tr>
                    <tr>
                        <td style="padding: 16px 32px; font-family: Arial, sans-serif; font-size: 12px; color: #6B7280;">
                            This is an automated message from ExpenseFlow. Please do not reply.
                        </td>
                    </tr>
                </table>
            </td>
        </tr>
    </table>
</body>
</html>
'''


def get_info_card(payload: Dict[str, Any]) -> str:
    """Expense summary rows"""
    rows = [
        ("Expense", payload.get("expense_id", "")),
        ("Employee", payload.get("employee_name", "")),
        ("Description", payload.get("description", "")),
        ("Category", payload.get("category", "")),
        ("Amount", f"{payload.get('amount', '')} {payload.get('currency', '')}".strip()),
    ]
    cells = "".join(
        f'''
        <tr>
            <td style="padding: 6px 12px; color: #6B7280; width: 140px;">{label}</td>
            <td style="padding: 6px 12px; font-weight: 600;">{value}</td>
        </tr>'''
        for label, value in rows if value
    )
    return f'''
    <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="100%"
           style="background-color: #F9FAFB; border: 1px solid #E5E7EB; margin: 16px 0;">
        {cells}
    </table>
    '''


def _expense_url(payload: Dict[str, Any], app_url: str) -> str:
    return f"{app_url}/expenses/{payload.get('expense_id', '')}"


# =============================================================================
# Templates
# =============================================================================

def get_expense_submitted_template(payload: Dict[str, Any], app_url: str = "") -> Dict[str, str]:
    """Template: Expense Submitted - Request for the approvers now on duty"""
    content = f'''
    <h2 style="margin: 0 0 12px 0;">Expense awaiting your approval</h2>
    <p>{payload.get("employee_name", "An employee")} submitted an expense that needs your decision.</p>
    {get_info_card(payload)}
    '''
    if payload.get("is_escalation"):
        content += '<p style="color: #B45309;">This approval was escalated because it has been waiting too long.</p>'

    return {
        "subject": f"New Expense Submitted - {payload.get('description', '')}",
        "body": get_base_template(content, "Review Expense", _expense_url(payload, app_url))
    }


def get_expense_approved_template(payload: Dict[str, Any], app_url: str = "") -> Dict[str, str]:
    """Template: Expense Approved - Notification to the employee"""
    comments = payload.get("comments")
    content = f'''
    <h2 style="margin: 0 0 12px 0;">Your expense was approved</h2>
    <p>{payload.get("approver_name", "An approver")} approved your expense.</p>
    {get_info_card(payload)}
    {f"<p><strong>Comments:</strong> {comments}</p>" if comments else ""}
    '''
    if payload.get("expense_status") == "approved":
        content += "<p>All required approvals are complete.</p>"

    return {
        "subject": f"Expense Approved - {payload.get('description', '')}",
        "body": get_base_template(content, "View Expense", _expense_url(payload, app_url), accent_color="#10B981")
    }


def get_expense_rejected_template(payload: Dict[str, Any], app_url: str = "") -> Dict[str, str]:
    """Template: Expense Rejected - Notification to the employee"""
    content = f'''
    <h2 style="margin: 0 0 12px 0;">Your expense was rejected</h2>
    <p>{payload.get("approver_name", "An approver")} rejected your expense.</p>
    {get_info_card(payload)}
    <p><strong>Reason:</strong> {payload.get("reason") or "No reason given"}</p>
    '''
    return {
        "subject": f"Expense Rejected - {payload.get('description', '')}",
        "body": get_base_template(content, "View Expense", _expense_url(payload, app_url), accent_color="#EF4444")
    }


TEMPLATE_REGISTRY: Dict[NotificationTemplateKey, Callable[[Dict[str, Any], str], Dict[str, str]]] = {
    NotificationTemplateKey.EXPENSE_SUBMITTED: get_expense_submitted_template,
    NotificationTemplateKey.EXPENSE_APPROVED: get_expense_approved_template,
    NotificationTemplateKey.EXPENSE_REJECTED: get_expense_rejected_template,
}


def get_email_template(
    template_key: NotificationTemplateKey,
    payload: Dict[str, Any],
    app_url: str = ""
) -> Dict[str, str]:
    """Render a notification; raises KeyError for unknown template keys"""
    return TEMPLATE_REGISTRY[NotificationTemplateKey(template_key)](payload, app_url)
