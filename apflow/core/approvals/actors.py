"""Who may act on a pending step: the named approver, or their active substitute."""


def is_substitute_active(setup, now):
    """True when the setup is active, names a substitute, and `now` is in its window.

    Missing window bounds are open-ended. Both bounds are inclusive.
    """
    if not setup or not setup.get('active'):
        return False
    if not setup.get('substitute_user_id'):
        return False
    starts = setup.get('substitute_from')
    ends = setup.get('substitute_to')
    if starts is not None and now < starts:
        return False
    if ends is not None and now > ends:
        return False
    return True


def allowed_actors(lookup, firm_id, approver_user_id, now):
    """Resolve the eligible actor ids for a step assigned to `approver_user_id`.

    Evaluated at action time so substitute window changes apply to in-flight
    approvals.
    """
    actors = {approver_user_id}
    setup = lookup(firm_id, approver_user_id)
    if is_substitute_active(setup, now):
        actors.add(setup['substitute_user_id'])
    return actors
