# services/exceptions.py


class OrganizationNotFoundError(LookupError):
    """The organization id does not match any stored tenant."""

    def __init__(self, organization_id):
        self.organization_id = organization_id
        super().__init__(f"Organization {organization_id} not found")
