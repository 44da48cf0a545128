"""
Access Applications Section Merging

Explicit merge functions applying a partial update onto a section snapshot.
Each function lists the fields it copies; a ``None`` in the patch keeps the
current value. Statuses are not touched here: the state manager revalidates
merged sections afterwards.
"""

from typing import TypeVar

from app.modules.access_applications.domain import (
    Address,
    AgreementItem,
    AgreementsSection,
    ApplicantSection,
    Collaborator,
    EthicsLetterSection,
    PersonalInfo,
    ProjectInfoSection,
    RepresentativeSection,
    RevisionRequest,
    RevisionRequestItem,
    TermsSection,
)
from app.modules.access_applications.schemas import (
    AddressUpdate,
    AgreementsUpdate,
    ApplicantUpdate,
    CollaboratorCreate,
    CollaboratorUpdate,
    EthicsLetterUpdate,
    PersonalInfoUpdate,
    ProjectInfoUpdate,
    RepresentativeUpdate,
    RevisionRequestItemUpdate,
    RevisionRequestUpdate,
    TermsUpdate,
)

T = TypeVar("T")


def _pick(value: T | None, current: T) -> T:
    return current if value is None else value


def display_name(info: PersonalInfo) -> str:
    first = info.first_name.strip()
    last = info.last_name.strip()
    if first and last:
        return f"{first} {last}"
    return info.display_name


def merge_personal_info(current: PersonalInfo, patch: PersonalInfoUpdate | None) -> PersonalInfo:
    if patch is None:
        return current
    merged = PersonalInfo(
        title=_pick(patch.title, current.title),
        first_name=_pick(patch.first_name, current.first_name),
        middle_name=_pick(patch.middle_name, current.middle_name),
        last_name=_pick(patch.last_name, current.last_name),
        display_name=current.display_name,
        suffix=_pick(patch.suffix, current.suffix),
        primary_affiliation=_pick(patch.primary_affiliation, current.primary_affiliation),
        institution_email=_pick(patch.institution_email, current.institution_email),
        google_email=_pick(patch.google_email, current.google_email),
        website=_pick(patch.website, current.website),
        position_title=_pick(patch.position_title, current.position_title),
    )
    return merged.model_copy(update={"display_name": display_name(merged)})


def merge_address(current: Address, patch: AddressUpdate | None) -> Address:
    if patch is None:
        return current
    return Address(
        building=_pick(patch.building, current.building),
        street_address=_pick(patch.street_address, current.street_address),
        city_and_province=_pick(patch.city_and_province, current.city_and_province),
        country=_pick(patch.country, current.country),
        postal_code=_pick(patch.postal_code, current.postal_code),
    )


def merge_terms(current: TermsSection, patch: TermsUpdate) -> TermsSection:
    if patch.agreement is None:
        return current
    agreement = current.agreement.model_copy(update={"accepted": patch.agreement.accepted})
    return current.model_copy(update={"agreement": agreement})


def merge_applicant(current: ApplicantSection, patch: ApplicantUpdate) -> ApplicantSection:
    return current.model_copy(
        update={
            "info": merge_personal_info(current.info, patch.info),
            "address": merge_address(current.address, patch.address),
        }
    )


def merge_representative(
    current: RepresentativeSection,
    patch: RepresentativeUpdate,
) -> RepresentativeSection:
    same_as_applicant = _pick(patch.address_same_as_applicant, current.address_same_as_applicant)
    # The address is not stored while it mirrors the applicant's
    address = Address() if same_as_applicant else merge_address(current.address, patch.address)
    return current.model_copy(
        update={
            "info": merge_personal_info(current.info, patch.info),
            "address_same_as_applicant": same_as_applicant,
            "address": address,
        }
    )


def merge_project_info(current: ProjectInfoSection, patch: ProjectInfoUpdate) -> ProjectInfoSection:
    urls = current.publications_urls
    if patch.publications_urls is not None:
        urls = tuple(patch.publications_urls)
    return current.model_copy(
        update={
            "title": _pick(patch.title, current.title),
            "website": _pick(patch.website, current.website),
            "background": _pick(patch.background, current.background),
            "aims": _pick(patch.aims, current.aims),
            "summary": _pick(patch.summary, current.summary),
            "methodology": _pick(patch.methodology, current.methodology),
            "publications_urls": urls,
        }
    )


def merge_ethics_letter(current: EthicsLetterSection, patch: EthicsLetterUpdate) -> EthicsLetterSection:
    """Apply the ethics declaration. Declaring it not required drops all letters."""
    declared = _pick(patch.declared_as_required, current.declared_as_required)
    docs = current.approval_letter_docs if declared else ()
    return current.model_copy(
        update={"declared_as_required": declared, "approval_letter_docs": docs}
    )


def merge_agreements(current: AgreementsSection, patch: AgreementsUpdate) -> AgreementsSection:
    """Merge acceptance by agreement name. Unknown names are ignored."""
    if patch.agreements is None:
        return current
    accepted = {item.name: item.accepted for item in patch.agreements}
    agreements = tuple(
        AgreementItem(name=item.name, accepted=accepted.get(item.name, item.accepted))
        for item in current.agreements
    )
    return current.model_copy(update={"agreements": agreements})


def _merge_revision_item(
    current: RevisionRequestItem,
    patch: RevisionRequestItemUpdate | None,
) -> RevisionRequestItem:
    if patch is None:
        return current
    return RevisionRequestItem(
        details=_pick(patch.details, current.details),
        requested=_pick(patch.requested, current.requested),
    )


def merge_revision_request(current: RevisionRequest, patch: RevisionRequestUpdate) -> RevisionRequest:
    return RevisionRequest(
        applicant=_merge_revision_item(current.applicant, patch.applicant),
        representative=_merge_revision_item(current.representative, patch.representative),
        project_info=_merge_revision_item(current.project_info, patch.project_info),
        collaborators=_merge_revision_item(current.collaborators, patch.collaborators),
        ethics_letter=_merge_revision_item(current.ethics_letter, patch.ethics_letter),
        signature=_merge_revision_item(current.signature, patch.signature),
        general=_merge_revision_item(current.general, patch.general),
    )


def build_collaborator(collaborator_id: str, data: CollaboratorCreate) -> Collaborator:
    return Collaborator(
        id=collaborator_id,
        info=merge_personal_info(PersonalInfo(), data.info),
        type=data.type,
    )


def merge_collaborator(current: Collaborator, patch: CollaboratorUpdate) -> Collaborator:
    return current.model_copy(
        update={
            "info": merge_personal_info(current.info, patch.info),
            "type": _pick(patch.type, current.type),
        }
    )
