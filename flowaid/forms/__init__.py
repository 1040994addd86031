from flowaid.forms.donation_form import DonationForm, DonationRequest, validate_donation_payload

__all__ = ["DonationForm", "DonationRequest", "validate_donation_payload"]
