"""PetCare Connect: REST backend for pet owners, veterinarians and clinics."""

__version__ = "1.0.0"
